"""Vote store, counter reconciler and the vote toggle protocol.

A vote row belongs to exactly one target, a grievance or a comment, and the
unique indexes created in :func:`civic_connect.database.ensure_indexes` allow
at most one row per (user, target). Grievance and comment vote counters are
derived data: only :func:`recount` writes them.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, NamedTuple, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .database import new_id, now_utc
from .errors import Conflict, InvalidInput, NotFound
from .models import VoteKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoteTarget:
    """The grievance or comment a vote applies to. Exactly one id is set."""
    grievance_id: Optional[str] = None
    comment_id: Optional[str] = None

    def __post_init__(self):
        if (self.grievance_id is None) == (self.comment_id is None):
            raise InvalidInput("A vote targets exactly one grievance or one comment")

    @classmethod
    def grievance(cls, grievance_id: str) -> "VoteTarget":
        return cls(grievance_id=grievance_id)

    @classmethod
    def comment(cls, comment_id: str) -> "VoteTarget":
        return cls(comment_id=comment_id)

    @property
    def is_grievance(self) -> bool:
        return self.grievance_id is not None

    @property
    def id(self) -> str:
        return self.grievance_id if self.is_grievance else self.comment_id

    @property
    def key(self) -> dict:
        # Only the set reference is stored; the partial unique indexes rely on it
        return {"grievance_id": self.grievance_id} if self.is_grievance else {"comment_id": self.comment_id}

    def collection(self, db):
        return db.grievances if self.is_grievance else db.comments


class VoteOutcome(NamedTuple):
    upvotes: int
    downvotes: int
    user_vote: Optional[str]


def _vote_kind(kind) -> VoteKind:
    try:
        return VoteKind(kind)
    except ValueError:
        raise InvalidInput(f"Unknown vote kind '{kind}'")

# ---------------------------------------------------------------------------
# Vote Store
# ---------------------------------------------------------------------------
def get_vote(db, user_id: str, target: VoteTarget) -> Optional[dict]:
    return db.user_votes.find_one({"user_id": user_id, **target.key})

def upsert_vote(db, user_id: str, target: VoteTarget, kind) -> dict:
    """Insert the vote, or overwrite the kind of the existing one.

    The insert goes first so that two concurrent requests for the same
    (user, target) are serialised by the unique index: the loser gets a
    DuplicateKeyError and turns into an update.
    """
    kind = _vote_kind(kind).value
    doc = {"_id": new_id(), "user_id": user_id, **target.key,
           "kind": kind, "created_at": now_utc()}
    try:
        db.user_votes.insert_one(doc)
        return doc
    except DuplicateKeyError:
        logger.debug("Vote by %s on %s exists, updating kind to %s", user_id, target.id, kind)
    try:
        return db.user_votes.find_one_and_update(
            {"user_id": user_id, **target.key},
            {"$set": {"kind": kind, "created_at": now_utc()}, "$setOnInsert": {"_id": new_id()}},
            upsert=True, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError as e:
        logger.warning("Vote by %s on %s raced twice: %s", user_id, target.id, e)
        raise Conflict("Vote was changed concurrently, please retry") from e

def remove_vote(db, user_id: str, target: VoteTarget) -> bool:
    result = db.user_votes.delete_one({"user_id": user_id, **target.key})
    return result.deleted_count > 0

def remove_votes_for(db, target: VoteTarget) -> int:
    """Drop every vote on a target. Used when the target itself is deleted."""
    return db.user_votes.delete_many(target.key).deleted_count

# ---------------------------------------------------------------------------
# Counter Reconciler
# ---------------------------------------------------------------------------
def recount(db, target: VoteTarget) -> dict:
    """Recompute the denormalized counters of ``target`` from its vote rows."""
    counts = {"upvotes": db.user_votes.count_documents({**target.key, "kind": VoteKind.UP.value})}
    if target.is_grievance:
        counts["downvotes"] = db.user_votes.count_documents({**target.key, "kind": VoteKind.DOWN.value})
    target.collection(db).update_one({"_id": target.id}, {"$set": counts})
    return counts

# ---------------------------------------------------------------------------
# Toggle protocol
# ---------------------------------------------------------------------------
def apply_vote(db, user_id: str, target: VoteTarget, kind) -> VoteOutcome:
    """Handle one vote click by ``user_id`` on ``target``.

    No vote -> the vote is cast. Same kind again -> the vote is removed.
    Opposite kind -> the vote is flipped. Counters are recomputed before
    returning, so the outcome always reflects the stored vote rows.
    """
    kind = _vote_kind(kind)
    if not target.is_grievance and kind is VoteKind.DOWN:
        raise InvalidInput("Comments can only be upvoted")
    if target.collection(db).find_one({"_id": target.id}, {"_id": 1}) is None:
        raise NotFound("Grievance not found" if target.is_grievance else "Comment not found")

    existing = get_vote(db, user_id, target)
    if existing and existing["kind"] == kind.value:
        remove_vote(db, user_id, target)
        user_vote = None
    else:
        upsert_vote(db, user_id, target, kind)
        user_vote = kind.value

    counts = recount(db, target)
    return VoteOutcome(counts["upvotes"], counts.get("downvotes", 0), user_vote)

def user_vote_map(db, user_id: str, grievance_ids: Iterable[str] = (),
                  comment_ids: Iterable[str] = ()) -> Dict[str, str]:
    """Return ``{target_id: kind}`` for the caller's votes on the given targets."""
    grievance_ids, comment_ids = list(grievance_ids), list(comment_ids)
    clauses = []
    if grievance_ids:
        clauses.append({"grievance_id": {"$in": grievance_ids}})
    if comment_ids:
        clauses.append({"comment_id": {"$in": comment_ids}})
    if not clauses:
        return {}
    votes = db.user_votes.find({"user_id": user_id, "$or": clauses})
    return {v.get("grievance_id") or v.get("comment_id"): v["kind"] for v in votes}
