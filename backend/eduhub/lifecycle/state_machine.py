"""
Single source of truth for doubt-session statuses and valid transitions.
All status changes must go through transition_status().
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from eduhub.exceptions import ConflictError
from eduhub.models import DoubtSession, DoubtStatus, DoubtType

logger = logging.getLogger(__name__)

TERMINAL_STATUSES: FrozenSet[DoubtStatus] = frozenset({DoubtStatus.CLOSED, DoubtStatus.CANCELLED})

# Statuses a session may start in, per variant
INITIAL_STATUS: Dict[DoubtType, DoubtStatus] = {
    DoubtType.TRAINER: DoubtStatus.PENDING,
    DoubtType.AI: DoubtStatus.IN_PROGRESS,
}

VALID_NEXT: Dict[DoubtStatus, List[DoubtStatus]] = {
    DoubtStatus.PENDING: [DoubtStatus.IN_PROGRESS, DoubtStatus.CLOSED, DoubtStatus.CANCELLED],
    DoubtStatus.IN_PROGRESS: [DoubtStatus.RESOLVED, DoubtStatus.CLOSED, DoubtStatus.CANCELLED],
    DoubtStatus.RESOLVED: [DoubtStatus.IN_PROGRESS, DoubtStatus.CLOSED],  # IN_PROGRESS = ai reopen
    DoubtStatus.CLOSED: [],
    DoubtStatus.CANCELLED: [],
}

# Session statuses that count as "still open" in listings
ACTIVE_STATUSES: List[DoubtStatus] = [DoubtStatus.PENDING, DoubtStatus.IN_PROGRESS]


def is_terminal(status: DoubtStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(
    from_status: Optional[DoubtStatus],
    to_status: DoubtStatus,
    doubt_type: DoubtType,
) -> bool:
    """Check if from_status -> to_status is allowed for a session of doubt_type."""
    if from_status is None:
        return INITIAL_STATUS.get(doubt_type) == to_status
    if to_status not in VALID_NEXT.get(from_status, []):
        return False
    if from_status == DoubtStatus.RESOLVED and to_status == DoubtStatus.IN_PROGRESS:
        return doubt_type == DoubtType.AI
    return True


def can_reopen(doubt: DoubtSession) -> bool:
    """A resolved ai session goes back to in_progress when the student follows up."""
    return doubt.doubt_type == DoubtType.AI and doubt.status == DoubtStatus.RESOLVED


def transition_status(doubt: DoubtSession, to_status: DoubtStatus, reason: Optional[str] = None) -> bool:
    """
    Move doubt to to_status in memory; the caller commits.
    Returns False if already in to_status. Raises ConflictError on an invalid edge.
    """
    current = doubt.status
    if current == to_status:
        return False

    if not can_transition(current, to_status, doubt.doubt_type):
        raise ConflictError(
            f"Cannot move a {doubt.doubt_type.value} doubt session from "
            f"{current.value} to {to_status.value}",
            details={"doubt_session_id": str(doubt.id), "status": current.value},
        )

    doubt.status = to_status
    doubt.updated_at = datetime.utcnow()
    logger.info(
        "doubt session %s: %s -> %s%s",
        doubt.id, current.value, to_status.value, f" ({reason})" if reason else "",
        extra={"doubt_session_id": str(doubt.id), "status": to_status.value},
    )
    return True
