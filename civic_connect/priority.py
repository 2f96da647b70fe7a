"""Priority score for the admin triage view.

The score is computed on read and never stored::

    score = max(0, net_votes * (2 if urgent else 1) - floor(age_hours / 24) * 0.1)

Every grievance whose result is not positive scores exactly 0, whatever its
urgency or age, so those grievances cannot be told apart by score.
"""

import math
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .models import GrievanceStatus

URGENT_MULTIPLIER = 2
DAILY_AGE_PENALTY = 0.1


def _as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value

def priority_score(grievance: dict, now: Optional[datetime] = None) -> float:
    now = _as_utc(now or datetime.now(timezone.utc))
    net_votes = grievance.get("upvotes", 0) - grievance.get("downvotes", 0)
    multiplier = URGENT_MULTIPLIER if grievance.get("status") == GrievanceStatus.URGENT.value else 1
    # A created_at ahead of the clock counts as brand new
    age_hours = max(0.0, (now - _as_utc(grievance["created_at"])).total_seconds() / 3600)
    age_penalty = math.floor(age_hours / 24) * DAILY_AGE_PENALTY
    return max(0.0, net_votes * multiplier - age_penalty)

def rank_by_priority(grievances: Iterable[dict], now: Optional[datetime] = None) -> List[dict]:
    """Return copies of ``grievances`` with ``priority_score`` set, highest first."""
    now = now or datetime.now(timezone.utc)
    scored = [dict(g, priority_score=priority_score(g, now)) for g in grievances]
    scored.sort(key=lambda g: g["priority_score"], reverse=True)
    return scored
