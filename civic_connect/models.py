# Enums and Pydantic models for the Civic Connect API

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ALL = "all"

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class UserRole(str, Enum):
    CITIZEN = "citizen"
    ADMIN = "admin"

class GrievanceStatus(str, Enum):
    PENDING = "pending"
    URGENT = "urgent"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CLOSED = "closed"

class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ESCALATED = "escalated"

class VoteKind(str, Enum):
    UP = "up"
    DOWN = "down"

class SortKey(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    UPVOTES_HIGH = "upvotes-high"
    UPVOTES_LOW = "upvotes-low"
    URGENT = "urgent"

# ---------------------------------------------------------------------------
# Base model: camelCase on the wire, snake_case in Python
# ---------------------------------------------------------------------------
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class UserCreate(CamelModel):
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6, max_length=72)
    email: Optional[str] = Field(None, max_length=320)
    phone: Optional[str] = Field(None, max_length=20)
    municipality: str = Field(..., min_length=1, max_length=200)
    role: UserRole = UserRole.CITIZEN
    department: Optional[str] = Field(None, max_length=200)

class UserLogin(BaseModel):
    username: str
    password: str

class UserResponse(CamelModel):
    id: str
    username: str
    email: Optional[str] = None
    phone: Optional[str] = None
    municipality: str
    role: UserRole
    department: Optional[str] = None
    created_at: datetime

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse

# ---------------------------------------------------------------------------
# Grievances
# ---------------------------------------------------------------------------
class GrievanceCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    category: str = Field(..., min_length=1, max_length=100)
    municipality: str = Field(..., min_length=1, max_length=200)
    location: Optional[str] = Field(None, max_length=500)
    image_url: Optional[str] = Field(None, max_length=1000)
    status: GrievanceStatus = GrievanceStatus.PENDING

class GrievanceUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    municipality: Optional[str] = Field(None, min_length=1, max_length=200)
    location: Optional[str] = Field(None, max_length=500)
    image_url: Optional[str] = Field(None, max_length=1000)
    status: Optional[GrievanceStatus] = None

class GrievanceResponse(CamelModel):
    id: str
    title: str
    description: str
    category: str
    municipality: str
    location: Optional[str] = None
    image_url: Optional[str] = None
    author_id: str
    author_username: Optional[str] = None
    status: GrievanceStatus
    upvotes: int = 0
    downvotes: int = 0
    created_at: datetime
    updated_at: datetime
    user_vote: Optional[VoteKind] = None

class PrioritizedGrievance(GrievanceResponse):
    priority_score: float

class GrievanceListResponse(CamelModel):
    grievances: List[GrievanceResponse]
    total: int

class GrievanceFilters(CamelModel):
    """Query-engine input. ``all`` or None leaves a field unconstrained."""
    category: Optional[str] = None
    municipality: Optional[str] = None
    status: Optional[str] = None
    author_id: Optional[str] = None
    search: Optional[str] = Field(None, max_length=200)
    sort_by: SortKey = SortKey.NEWEST
    limit: Optional[int] = Field(None, ge=1)
    offset: int = Field(0, ge=0)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v != ALL and v not in [s.value for s in GrievanceStatus]:
            raise ValueError(f"Unknown status '{v}'")
        return v

# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------
class CommentCreate(CamelModel):
    text: str = Field(..., min_length=1, max_length=2000)

class CommentUpdate(CamelModel):
    text: str = Field(..., min_length=1, max_length=2000)

class CommentResponse(CamelModel):
    id: str
    grievance_id: str
    author_id: str
    author_username: Optional[str] = None
    text: str
    upvotes: int = 0
    created_at: datetime
    user_vote: Optional[VoteKind] = None

# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
class VoteRequest(CamelModel):
    vote_type: VoteKind

class VoteResponse(CamelModel):
    upvotes: int
    downvotes: int
    user_vote: Optional[VoteKind] = None

class CommentVoteResponse(CamelModel):
    upvotes: int
    user_vote: Optional[VoteKind] = None

# ---------------------------------------------------------------------------
# Departments & Assignments
# ---------------------------------------------------------------------------
class DepartmentCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    municipality: str = Field(..., min_length=1, max_length=200)
    head_id: Optional[str] = None

class DepartmentResponse(CamelModel):
    id: str
    name: str
    municipality: str
    head_id: Optional[str] = None
    created_at: datetime

class AssignmentCreate(CamelModel):
    grievance_id: str
    department_id: Optional[str] = None
    assigned_to: Optional[str] = None
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    notes: Optional[str] = Field(None, max_length=5000)

class AssignmentUpdate(CamelModel):
    department_id: Optional[str] = None
    assigned_to: Optional[str] = None
    status: Optional[AssignmentStatus] = None
    notes: Optional[str] = Field(None, max_length=5000)

class AssignmentResponse(CamelModel):
    id: str
    grievance_id: str
    department_id: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_by: str
    assigned_at: datetime
    status: AssignmentStatus
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None

# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
class StatsResponse(CamelModel):
    total: int = 0
    pending: int = 0
    urgent: int = 0
    in_progress: int = 0
    resolved: int = 0
    closed: int = 0
