from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from eduhub.db import get_db
from eduhub.auth import decode_access_token
from eduhub.models import User
from eduhub.services.ai_responder import SimulatedResponder
from eduhub.services.doubt_service import DoubtService
from eduhub.services.message_relay import MessageRelay
from typing import Optional

security = HTTPBearer(auto_error=False)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current user from JWT token (header or cookie)"""
    token = None
    if credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get("access_token")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = get_current_user_from_token(token, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user_id = str(user.id)
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    """Get current active user"""
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user"
        )
    return current_user


def get_current_user_from_token(token: str, db: Session) -> Optional[User]:
    """Get user from token string (for WebSockets)"""
    payload = decode_access_token(token)
    if not payload:
        return None

    email: str = payload.get("sub")
    if not email:
        return None

    return db.query(User).filter(User.email == email).first()


def get_relay(request: Request) -> MessageRelay:
    return request.app.state.relay


def get_responder(request: Request) -> SimulatedResponder:
    return request.app.state.responder


def get_doubt_service(
    db: Session = Depends(get_db),
    relay: MessageRelay = Depends(get_relay),
    responder: SimulatedResponder = Depends(get_responder),
) -> DoubtService:
    return DoubtService(db, relay=relay, responder=responder)
