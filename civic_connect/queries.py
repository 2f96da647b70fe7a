"""Read side: grievance filtering, sorting and pagination, plus comment
listing and per-status statistics."""

import re
import logging
from typing import Dict, List, Optional, Tuple

from .models import ALL, GrievanceFilters, GrievanceStatus, SortKey
from .priority import rank_by_priority

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("title", "description", "location")

# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------
def _constrained(value: Optional[str]) -> bool:
    return value is not None and value != "" and value != ALL

def build_query(filters: GrievanceFilters) -> dict:
    """Translate ``filters`` into a MongoDB predicate shared by list and count."""
    query: Dict = {}
    for field in ("category", "municipality", "status"):
        value = getattr(filters, field)
        if _constrained(value):
            query[field] = value
    if _constrained(filters.author_id):
        query["author_id"] = filters.author_id
    search = (filters.search or "").strip()
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{field: pattern} for field in SEARCH_FIELDS]
    return query

def _sort_stages(sort_by: SortKey) -> List[dict]:
    # _id breaks ties so offset pages never overlap
    if sort_by == SortKey.OLDEST:
        return [{"$sort": {"created_at": 1, "_id": 1}}]
    if sort_by in (SortKey.UPVOTES_HIGH, SortKey.UPVOTES_LOW):
        direction = -1 if sort_by == SortKey.UPVOTES_HIGH else 1
        return [{"$addFields": {"_net_votes": {"$subtract": ["$upvotes", "$downvotes"]}}},
                {"$sort": {"_net_votes": direction, "_id": 1}}]
    if sort_by == SortKey.URGENT:
        return [{"$addFields": {"_urgent_rank": {
                    "$cond": [{"$eq": ["$status", GrievanceStatus.URGENT.value]}, 0, 1]}}},
                {"$sort": {"_urgent_rank": 1, "created_at": -1, "_id": 1}}]
    return [{"$sort": {"created_at": -1, "_id": 1}}]

# ---------------------------------------------------------------------------
# Author join
# ---------------------------------------------------------------------------
def attach_authors(db, docs: List[dict]) -> List[dict]:
    """Set ``author_username`` on each document from the users collection."""
    author_ids = list({d["author_id"] for d in docs if d.get("author_id")})
    if not author_ids:
        return docs
    names = {u["_id"]: u["username"]
             for u in db.users.find({"_id": {"$in": author_ids}}, {"username": 1})}
    for d in docs:
        d["author_username"] = names.get(d.get("author_id"))
    return docs

# ---------------------------------------------------------------------------
# Grievances
# ---------------------------------------------------------------------------
def list_grievances(db, filters: GrievanceFilters) -> Tuple[List[dict], int]:
    """Return one page of matching grievances and the unpaginated match count."""
    query = build_query(filters)
    pipeline = [{"$match": query}] + _sort_stages(filters.sort_by)
    if filters.offset:
        pipeline.append({"$skip": filters.offset})
    if filters.limit:
        pipeline.append({"$limit": filters.limit})
    grievances = list(db.grievances.aggregate(pipeline))
    for g in grievances:
        g.pop("_net_votes", None)
        g.pop("_urgent_rank", None)
    total = db.grievances.count_documents(query)
    logger.debug("Grievance query %s matched %d, returned %d", query, total, len(grievances))
    return attach_authors(db, grievances), total

def prioritized_grievances(db, query: dict, limit: int) -> List[dict]:
    """Return the ``limit`` highest-priority grievances matching ``query``.

    Only grievances with positive net votes can score above 0, so those are
    all scored. The rest tie at 0 and rank newest first, so at most ``limit``
    of them are fetched.
    """
    net = {"$addFields": {"_net_votes": {"$subtract": ["$upvotes", "$downvotes"]}}}
    newest = {"$sort": {"created_at": -1, "_id": 1}}
    positive = db.grievances.aggregate(
        [{"$match": query}, net, {"$match": {"_net_votes": {"$gt": 0}}}, newest])
    rest = db.grievances.aggregate(
        [{"$match": query}, net, {"$match": {"_net_votes": {"$lte": 0}}}, newest, {"$limit": limit}])
    candidates = list(positive) + list(rest)
    for g in candidates:
        g.pop("_net_votes", None)
    # Merge back into newest-first order so zero scores tie the same way
    candidates.sort(key=lambda g: g["_id"])
    candidates.sort(key=lambda g: g["created_at"], reverse=True)
    return attach_authors(db, rank_by_priority(candidates)[:limit])

def get_grievance(db, grievance_id: str) -> Optional[dict]:
    g = db.grievances.find_one({"_id": grievance_id})
    if g is None:
        return None
    return attach_authors(db, [g])[0]

def grievance_stats(db, municipality: Optional[str] = None) -> Dict[str, int]:
    match = {"municipality": municipality} if _constrained(municipality) else {}
    rows = db.grievances.aggregate([
        {"$match": match},
        {"$group": {"_id": "$status", "count": {"$sum": 1}}}])
    stats = {s.value: 0 for s in GrievanceStatus}
    for row in rows:
        stats[row["_id"]] = row["count"]
    return {"total": sum(stats.values()), "pending": stats["pending"], "urgent": stats["urgent"],
            "in_progress": stats["in-progress"], "resolved": stats["resolved"],
            "closed": stats["closed"]}

# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------
def list_comments(db, grievance_id: str) -> List[dict]:
    comments = list(db.comments.find({"grievance_id": grievance_id}).sort("created_at", -1))
    return attach_authors(db, comments)
