"""
Access guard for doubt sessions: admins see everything, everyone else only
the sessions they take part in.
"""
from uuid import UUID

from sqlalchemy.orm import Session

from eduhub.exceptions import AuthorizationError, NotFoundError
from eduhub.models import DoubtSession, Role, User


def can_access_session(doubt: DoubtSession, user: User) -> bool:
    if user.role == Role.ADMIN:
        return True
    return doubt.is_participant(user.id)


def ensure_session_access(doubt: DoubtSession, user: User) -> DoubtSession:
    if not can_access_session(doubt, user):
        raise AuthorizationError("Not authorized to access this doubt session.")
    return doubt


def load_session_for(db: Session, doubt_session_id: UUID, user: User) -> DoubtSession:
    """Fetch a doubt session and run the guard before anything else touches it."""
    doubt = db.get(DoubtSession, doubt_session_id)
    if not doubt:
        raise NotFoundError("Doubt session", str(doubt_session_id))
    return ensure_session_access(doubt, user)
