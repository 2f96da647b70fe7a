# Civic Connect: civic issue reporting service
# FastAPI + MongoDB

import uuid
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Depends, Query, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from . import __version__
from .auth import (create_access_token, get_current_user, get_optional_user, hash_password,
                   is_admin, oauth2_scheme, require_admin, revoke_token, user_to_response,
                   verify_password)
from .config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .database import get_db, new_id, now_utc, run_db, shutdown_db, startup_db
from .errors import (CivicError, Forbidden, InvalidInput, NotFound, Unauthorized,
                     civic_error_handler,
                     validation_error_handler)
from .lifecycle import check_initial_status, plan_status_change
from .models import (AssignmentCreate, AssignmentResponse, AssignmentStatus, AssignmentUpdate,
                     CommentCreate, CommentResponse, CommentUpdate, CommentVoteResponse,
                     DepartmentCreate, DepartmentResponse, GrievanceCreate, GrievanceFilters,
                     GrievanceListResponse, GrievanceResponse, GrievanceStatus, GrievanceUpdate,
                     PrioritizedGrievance, SortKey, StatsResponse, TokenResponse, UserCreate,
                     UserLogin, UserResponse, UserRole, VoteRequest, VoteResponse)
from .queries import (attach_authors, get_grievance, grievance_stats, list_comments,
                      list_grievances, prioritized_grievances)
from .votes import VoteTarget, apply_vote, remove_votes_for, user_vote_map

logger = logging.getLogger(__name__)

REQUIRED_GRIEVANCE_FIELDS = ("title", "description", "category", "municipality")
OPEN_STATUSES = [GrievanceStatus.PENDING.value, GrievanceStatus.URGENT.value,
                 GrievanceStatus.IN_PROGRESS.value]

# ---------------------------------------------------------------------------
# App & Globals
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup_db()
    yield
    shutdown_db()

app = FastAPI(title="Civic Connect Grievance Reporting", version=__version__, lifespan=lifespan)
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(CivicError, civic_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

# ---------------------------------------------------------------------------
# Security Headers Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

app.add_middleware(SecurityHeadersMiddleware)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def validate_uuid(value: str, param_name: str = "id") -> str:
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        raise InvalidInput(f"Invalid {param_name} format")
    return value

def check_owner_or_admin(user: dict, doc: dict) -> None:
    if doc.get("author_id") != user["_id"] and not is_admin(user):
        raise Forbidden("Permission denied")

def grievance_to_response(g: dict, user_vote: Optional[str] = None) -> GrievanceResponse:
    return GrievanceResponse(**g, id=g["_id"], user_vote=user_vote)

def comment_to_response(c: dict, user_vote: Optional[str] = None) -> CommentResponse:
    return CommentResponse(**c, id=c["_id"], user_vote=user_vote)

def department_to_response(d: dict) -> DepartmentResponse:
    return DepartmentResponse(**d, id=d["_id"])

def assignment_to_response(a: dict) -> AssignmentResponse:
    return AssignmentResponse(**a, id=a["_id"])

async def load_grievance(db, grievance_id: str) -> dict:
    grievance_id = validate_uuid(grievance_id, "grievance_id")
    g = await run_db(get_grievance, db, grievance_id)
    if not g:
        raise NotFound("Grievance not found")
    return g

async def load_comment(db, comment_id: str) -> dict:
    comment_id = validate_uuid(comment_id, "comment_id")
    c = await run_db(db.comments.find_one, {"_id": comment_id})
    if not c:
        raise NotFound("Comment not found")
    return c

def build_user_doc(user_data: UserCreate) -> dict:
    return {
        "_id": new_id(), "username": user_data.username,
        "hashed_password": hash_password(user_data.password),
        "email": user_data.email, "phone": user_data.phone,
        "municipality": user_data.municipality, "role": user_data.role.value,
        "department": user_data.department if user_data.role == UserRole.ADMIN else None,
        "created_at": now_utc(),
    }

async def insert_user(db, user_doc: dict) -> None:
    try:
        await run_db(db.users.insert_one, user_doc)
    except DuplicateKeyError:
        raise InvalidInput("Username already exists")

# ---------------------------------------------------------------------------
# AUTH ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/auth/register", response_model=TokenResponse)
@limiter.limit("3/minute")
async def register(request: Request, user_data: UserCreate, db=Depends(get_db)):
    # Public registration is citizen-only; admins are created by an admin
    if user_data.role != UserRole.CITIZEN:
        raise Forbidden("Public registration is for citizens only")
    existing = await run_db(db.users.find_one, {"username": user_data.username})
    if existing:
        raise InvalidInput("Username already exists")
    user_doc = build_user_doc(user_data)
    await insert_user(db, user_doc)
    token = create_access_token({"sub": user_data.username, "role": user_doc["role"]})
    return TokenResponse(access_token=token, user=user_to_response(user_doc))

@app.post("/auth/login", response_model=TokenResponse)
@limiter.limit("5/minute")
async def login(request: Request, form: UserLogin, db=Depends(get_db)):
    user = await run_db(db.users.find_one, {"username": form.username})
    if not user or not verify_password(form.password, user["hashed_password"]):
        raise Unauthorized("Invalid credentials")
    token = create_access_token({"sub": user["username"], "role": user["role"]})
    return TokenResponse(access_token=token, user=user_to_response(user))

@app.get("/auth/me", response_model=UserResponse)
async def get_me(user=Depends(get_current_user)):
    return user_to_response(user)

@app.post("/auth/logout")
async def logout(token: Optional[str] = Depends(oauth2_scheme)):
    if token:
        revoke_token(token)
    return {"detail": "Logged out successfully"}

# ---------------------------------------------------------------------------
# GRIEVANCE ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/grievances", response_model=GrievanceListResponse)
async def get_grievances(
    category: Optional[str] = None, municipality: Optional[str] = None,
    status: Optional[str] = None, search: Optional[str] = None,
    sort_by: SortKey = Query(SortKey.NEWEST, alias="sortBy"),
    author_id: Optional[str] = Query(None, alias="authorId"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user=Depends(get_optional_user), db=Depends(get_db)):
    try:
        filters = GrievanceFilters(category=category, municipality=municipality, status=status,
                                   search=search, sort_by=sort_by, author_id=author_id,
                                   limit=limit, offset=offset)
    except ValidationError as e:
        raise InvalidInput(e.errors()[0]["msg"])
    grievances, total = await run_db(list_grievances, db, filters)
    votes = {}
    if user and grievances:
        votes = await run_db(user_vote_map, db, user["_id"],
                             grievance_ids=[g["_id"] for g in grievances])
    return GrievanceListResponse(
        grievances=[grievance_to_response(g, votes.get(g["_id"])) for g in grievances],
        total=total)

@app.post("/grievances", response_model=GrievanceResponse, status_code=status.HTTP_201_CREATED)
async def create_grievance(data: GrievanceCreate, user=Depends(get_current_user), db=Depends(get_db)):
    initial = check_initial_status(data.status)
    now = now_utc()
    doc = {
        "_id": new_id(), "title": data.title, "description": data.description,
        "category": data.category, "municipality": data.municipality,
        "location": data.location, "image_url": data.image_url,
        "author_id": user["_id"], "status": initial.value,
        "upvotes": 0, "downvotes": 0, "created_at": now, "updated_at": now,
    }
    await run_db(db.grievances.insert_one, doc)
    logger.info("User %s filed grievance %s (%s)", user["username"], doc["_id"], initial.value)
    return grievance_to_response({**doc, "author_username": user["username"]})

@app.get("/grievances/{grievance_id}", response_model=GrievanceResponse)
async def get_grievance_detail(grievance_id: str, user=Depends(get_optional_user),
                               db=Depends(get_db)):
    g = await load_grievance(db, grievance_id)
    votes = await run_db(user_vote_map, db, user["_id"], grievance_ids=[g["_id"]]) if user else {}
    return grievance_to_response(g, votes.get(g["_id"]))

@app.patch("/grievances/{grievance_id}", response_model=GrievanceResponse)
async def update_grievance(grievance_id: str, update: GrievanceUpdate,
                           user=Depends(get_current_user), db=Depends(get_db)):
    g = await load_grievance(db, grievance_id)
    check_owner_or_admin(user, g)
    set_fields = update.model_dump(exclude_unset=True, exclude={"status"})
    for field in REQUIRED_GRIEVANCE_FIELDS:
        if field in set_fields and set_fields[field] is None:
            del set_fields[field]
    new_status = plan_status_change(user, g["status"], update.status)
    if new_status is not None:
        set_fields["status"] = new_status.value
    if set_fields:
        set_fields["updated_at"] = now_utc()
        await run_db(db.grievances.update_one, {"_id": g["_id"]}, {"$set": set_fields})
    return await get_grievance_detail(g["_id"], user, db)

@app.delete("/grievances/{grievance_id}")
async def delete_grievance(grievance_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    g = await load_grievance(db, grievance_id)
    check_owner_or_admin(user, g)
    def delete():
        comment_ids = [c["_id"] for c in db.comments.find({"grievance_id": g["_id"]}, {"_id": 1})]
        if comment_ids:
            db.user_votes.delete_many({"comment_id": {"$in": comment_ids}})
        db.comments.delete_many({"grievance_id": g["_id"]})
        remove_votes_for(db, VoteTarget.grievance(g["_id"]))
        db.assignments.delete_many({"grievance_id": g["_id"]})
        return db.grievances.delete_one({"_id": g["_id"]})
    result = await run_db(delete)
    if result.deleted_count == 0:
        raise NotFound("Grievance not found")
    logger.info("User %s deleted grievance %s", user["username"], g["_id"])
    return {"detail": "Grievance deleted successfully"}

# ---------------------------------------------------------------------------
# VOTING ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/grievances/{grievance_id}/vote", response_model=VoteResponse)
async def vote_on_grievance(grievance_id: str, vote: VoteRequest,
                            user=Depends(get_current_user), db=Depends(get_db)):
    grievance_id = validate_uuid(grievance_id, "grievance_id")
    outcome = await run_db(apply_vote, db, user["_id"], VoteTarget.grievance(grievance_id),
                           vote.vote_type)
    return VoteResponse(upvotes=outcome.upvotes, downvotes=outcome.downvotes,
                        user_vote=outcome.user_vote)

@app.post("/comments/{comment_id}/vote", response_model=CommentVoteResponse)
async def vote_on_comment(comment_id: str, vote: VoteRequest,
                          user=Depends(get_current_user), db=Depends(get_db)):
    comment_id = validate_uuid(comment_id, "comment_id")
    outcome = await run_db(apply_vote, db, user["_id"], VoteTarget.comment(comment_id),
                           vote.vote_type)
    return CommentVoteResponse(upvotes=outcome.upvotes, user_vote=outcome.user_vote)

# ---------------------------------------------------------------------------
# COMMENT ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/grievances/{grievance_id}/comments", response_model=List[CommentResponse])
async def get_comments(grievance_id: str, user=Depends(get_optional_user), db=Depends(get_db)):
    g = await load_grievance(db, grievance_id)
    comments = await run_db(list_comments, db, g["_id"])
    votes = {}
    if user and comments:
        votes = await run_db(user_vote_map, db, user["_id"],
                             comment_ids=[c["_id"] for c in comments])
    return [comment_to_response(c, votes.get(c["_id"])) for c in comments]

@app.post("/grievances/{grievance_id}/comments", response_model=CommentResponse,
          status_code=status.HTTP_201_CREATED)
async def create_comment(grievance_id: str, data: CommentCreate,
                         user=Depends(get_current_user), db=Depends(get_db)):
    g = await load_grievance(db, grievance_id)
    doc = {"_id": new_id(), "grievance_id": g["_id"], "author_id": user["_id"],
           "text": data.text, "upvotes": 0, "created_at": now_utc()}
    await run_db(db.comments.insert_one, doc)
    return comment_to_response({**doc, "author_username": user["username"]})

@app.patch("/comments/{comment_id}", response_model=CommentResponse)
async def update_comment(comment_id: str, update: CommentUpdate,
                         user=Depends(get_current_user), db=Depends(get_db)):
    c = await load_comment(db, comment_id)
    check_owner_or_admin(user, c)
    await run_db(db.comments.update_one, {"_id": c["_id"]}, {"$set": {"text": update.text}})
    updated = await run_db(db.comments.find_one, {"_id": c["_id"]})
    if not updated:
        raise NotFound("Comment not found")
    votes = await run_db(user_vote_map, db, user["_id"], comment_ids=[c["_id"]])
    updated = (await run_db(attach_authors, db, [updated]))[0]
    return comment_to_response(updated, votes.get(c["_id"]))

@app.delete("/comments/{comment_id}")
async def delete_comment(comment_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    c = await load_comment(db, comment_id)
    check_owner_or_admin(user, c)
    def delete():
        remove_votes_for(db, VoteTarget.comment(c["_id"]))
        return db.comments.delete_one({"_id": c["_id"]})
    result = await run_db(delete)
    if result.deleted_count == 0:
        raise NotFound("Comment not found")
    return {"detail": "Comment deleted successfully"}

# ---------------------------------------------------------------------------
# DEPARTMENT ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/departments", response_model=List[DepartmentResponse])
async def get_departments(municipality: Optional[str] = None, db=Depends(get_db)):
    query = {"municipality": municipality} if municipality else {}
    departments = await run_db(lambda: list(db.departments.find(query).sort("name", 1)))
    return [department_to_response(d) for d in departments]

@app.post("/departments", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(data: DepartmentCreate, user=Depends(require_admin),
                            db=Depends(get_db)):
    if data.head_id:
        head = await run_db(db.users.find_one, {"_id": data.head_id})
        if not head:
            raise InvalidInput("Department head does not exist")
    doc = {"_id": new_id(), "name": data.name, "municipality": data.municipality,
           "head_id": data.head_id, "created_at": now_utc()}
    await run_db(db.departments.insert_one, doc)
    logger.info("Admin %s created department %s (%s)", user["username"], data.name, data.municipality)
    return department_to_response(doc)

# ---------------------------------------------------------------------------
# ASSIGNMENT ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/assignments", response_model=List[AssignmentResponse])
async def get_assignments(
    grievance_id: Optional[str] = Query(None, alias="grievanceId"),
    department_id: Optional[str] = Query(None, alias="departmentId"),
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    status: Optional[AssignmentStatus] = None,
    user=Depends(require_admin), db=Depends(get_db)):
    query = {}
    if grievance_id: query["grievance_id"] = grievance_id
    if department_id: query["department_id"] = department_id
    if assigned_to: query["assigned_to"] = assigned_to
    if status: query["status"] = status.value
    assignments = await run_db(lambda: list(db.assignments.find(query).sort("assigned_at", -1)))
    return [assignment_to_response(a) for a in assignments]

@app.post("/assignments", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(data: AssignmentCreate, user=Depends(require_admin),
                            db=Depends(get_db)):
    g = await load_grievance(db, data.grievance_id)
    doc = {"_id": new_id(), "grievance_id": g["_id"], "department_id": data.department_id,
           "assigned_to": data.assigned_to, "assigned_by": user["_id"],
           "assigned_at": now_utc(), "status": data.status.value, "notes": data.notes,
           "completed_at": now_utc() if data.status == AssignmentStatus.COMPLETED else None}
    await run_db(db.assignments.insert_one, doc)
    logger.info("Admin %s assigned grievance %s", user["username"], g["_id"])
    return assignment_to_response(doc)

@app.patch("/assignments/{assignment_id}", response_model=AssignmentResponse)
async def update_assignment(assignment_id: str, update: AssignmentUpdate,
                            user=Depends(require_admin), db=Depends(get_db)):
    assignment_id = validate_uuid(assignment_id, "assignment_id")
    set_fields = update.model_dump(exclude_unset=True, exclude={"status"})
    if update.status is not None:
        set_fields["status"] = update.status.value
        set_fields["completed_at"] = now_utc() if update.status == AssignmentStatus.COMPLETED else None
    if not set_fields:
        raise InvalidInput("No fields to update")
    result = await run_db(db.assignments.update_one, {"_id": assignment_id}, {"$set": set_fields})
    if result.matched_count == 0:
        raise NotFound("Assignment not found")
    updated = await run_db(db.assignments.find_one, {"_id": assignment_id})
    return assignment_to_response(updated)

# ---------------------------------------------------------------------------
# ANALYTICS & ADMIN ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/analytics/stats", response_model=StatsResponse)
async def get_stats(municipality: Optional[str] = None, user=Depends(require_admin),
                    db=Depends(get_db)):
    stats = await run_db(grievance_stats, db, municipality)
    return StatsResponse(**stats)

@app.get("/admin/priority-queue", response_model=List[PrioritizedGrievance])
async def get_priority_queue(municipality: Optional[str] = None,
                             limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                             user=Depends(require_admin), db=Depends(get_db)):
    query = {"status": {"$in": OPEN_STATUSES}}
    if municipality:
        query["municipality"] = municipality
    ranked = await run_db(prioritized_grievances, db, query, limit)
    return [PrioritizedGrievance(**g, id=g["_id"]) for g in ranked]

@app.get("/admin/users", response_model=List[UserResponse])
async def admin_list_users(role: Optional[str] = None, user=Depends(require_admin),
                           db=Depends(get_db)):
    query = {}
    if role and role in [r.value for r in UserRole]:
        query["role"] = role
    users = await run_db(lambda: list(db.users.find(query).sort("created_at", -1)))
    return [user_to_response(u) for u in users]

@app.post("/admin/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def admin_create_user(user_data: UserCreate, user=Depends(require_admin),
                            db=Depends(get_db)):
    user_doc = build_user_doc(user_data)
    await insert_user(db, user_doc)
    logger.info("Admin %s created user %s (%s)", user["username"], user_data.username,
                user_data.role.value)
    return user_to_response(user_doc)

# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "healthy", "system": "Civic Connect", "timestamp": now_utc()}

def main():
    uvicorn.run(app, host="0.0.0.0", port=8000)

if __name__ == "__main__":
    main()
