"""Grievance status lifecycle.

The status graph is permissive: any status may move to any other, and
``resolved``/``closed`` are not terminal, so an admin can reopen a grievance.
Tighten a rule by editing ``TRANSITIONS``.
"""

import logging
from typing import Dict, FrozenSet, Optional

from .errors import Forbidden, InvalidInput
from .models import GrievanceStatus, UserRole

logger = logging.getLogger(__name__)

_ALL_STATUSES = frozenset(GrievanceStatus)

TRANSITIONS: Dict[GrievanceStatus, FrozenSet[GrievanceStatus]] = {
    GrievanceStatus.PENDING: _ALL_STATUSES,
    GrievanceStatus.URGENT: _ALL_STATUSES,
    GrievanceStatus.IN_PROGRESS: _ALL_STATUSES,
    GrievanceStatus.RESOLVED: _ALL_STATUSES,
    GrievanceStatus.CLOSED: _ALL_STATUSES,
}

# Statuses a citizen may pick when filing a grievance
INITIAL_STATUSES = frozenset({GrievanceStatus.PENDING, GrievanceStatus.URGENT})


def _status(value) -> GrievanceStatus:
    try:
        return GrievanceStatus(value)
    except ValueError:
        raise InvalidInput(f"Unknown status '{value}'")


def check_initial_status(status) -> GrievanceStatus:
    status = _status(status)
    if status not in INITIAL_STATUSES:
        raise InvalidInput(f"A new grievance cannot start as '{status.value}'")
    return status

def can_transition(current, new) -> bool:
    return _status(new) in TRANSITIONS.get(_status(current), frozenset())

def check_transition(current, new) -> GrievanceStatus:
    if not can_transition(current, new):
        raise InvalidInput(f"Cannot move a grievance from '{_status(current).value}' "
                           f"to '{_status(new).value}'")
    return _status(new)

def authorize_status_change(user: dict) -> None:
    if user.get("role") != UserRole.ADMIN.value:
        raise Forbidden("Only administrators can change a grievance's status")

def plan_status_change(user: dict, current, requested) -> Optional[GrievanceStatus]:
    """Return the status to persist, or None when ``requested`` is no change.

    Re-submitting the current status is accepted from anyone allowed to edit
    the grievance; an actual change needs an admin and a permitted transition.
    """
    if requested is None or _status(requested) == _status(current):
        return None
    authorize_status_change(user)
    new_status = check_transition(current, requested)
    logger.info("Admin %s moves a grievance from %s to %s", user.get("username"),
                _status(current).value, new_status.value)
    return new_status
