"""
WebSocket router for real-time chat and notifications.
Token must be provided (query param, cookie, or Bearer header); server validates JWT
and ensures path user_id matches token so clients cannot subscribe as another user.
Doubt-session rooms are joined only after the same access guard the HTTP routes use.
"""
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query, Cookie, Depends, HTTPException, Request
from eduhub.websocket.manager import ConnectionManager
from eduhub.websocket.events import WebSocketEvent, EventType, ClientMessageType, session_room
from eduhub.deps import get_current_user_from_token, get_current_user
from eduhub.db import SessionLocal
from eduhub.exceptions import AppException
from eduhub.models import Role
from eduhub.services import directory_service
from eduhub.services.authorization import load_session_for
from typing import Optional, Tuple
from uuid import UUID
import logging
import json

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["websocket"])


def _session_factory(app):
    return getattr(app.state, "session_factory", SessionLocal)


def _authenticate(app, token: str):
    db = _session_factory(app)()
    try:
        return get_current_user_from_token(token, db)
    finally:
        db.close()


def _parse_session_id(doubt_session_id) -> Optional[UUID]:
    try:
        return UUID(str(doubt_session_id))
    except ValueError:
        return None


def _can_join(app, doubt_session_id: str, user_id: str) -> Tuple[Optional[UUID], Optional[str]]:
    """
    Run the session guard. Returns the canonical session id, or an error message
    when the user may not join. Rooms are keyed by the canonical id.
    """
    session_uuid = _parse_session_id(doubt_session_id)
    if session_uuid is None:
        return None, "Invalid doubt session id"

    db = _session_factory(app)()
    try:
        user = directory_service.get_user(db, UUID(user_id))
        load_session_for(db, session_uuid, user)
        return session_uuid, None
    except AppException as e:
        return None, e.message
    finally:
        db.close()


@router.websocket("/{user_id}")
async def websocket_endpoint(
    websocket: WebSocket,
    user_id: str,
    token: Optional[str] = Query(None),
    access_token: Optional[str] = Cookie(None)  # Auto-read 'access_token' cookie
):
    """
    WebSocket endpoint for chat rooms and personal notifications.
    Auth: token in query (?token=), cookie (access_token), or Authorization: Bearer.
    Client frames: joinDoubtSession / leaveDoubtSession {"doubt_session_id": ...}, ping.
    """
    manager: ConnectionManager = websocket.app.state.connection_manager

    final_token = token or access_token
    if not final_token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            final_token = auth_header.split(" ")[1]

    if not final_token:
        logger.warning("WS connection rejected: no token")
        await websocket.close(code=1008, reason="Missing authentication token")
        return

    user = _authenticate(websocket.app, final_token)
    if not user or not user.is_active:
        await websocket.close(code=1008, reason="Invalid or inactive user")
        return
    if str(user.id) != user_id:
        await websocket.close(code=1008, reason="Token user does not match path")
        return

    await manager.connect(websocket, user_id)
    try:
        await websocket.send_json(WebSocketEvent.notification("Connected to real-time updates", level="success"))

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.error(f"Invalid JSON received from user {user_id}", extra={"user_id": user_id})
                continue

            message_type = message.get("type")
            doubt_session_id = message.get("doubt_session_id")

            if message_type == ClientMessageType.JOIN_DOUBT_SESSION.value:
                session_uuid, error = _can_join(websocket.app, doubt_session_id, user_id)
                if error:
                    logger.warning(
                        f"User {user_id} refused room for doubt {doubt_session_id}: {error}",
                        extra={"user_id": user_id, "doubt_session_id": doubt_session_id},
                    )
                    await websocket.send_json(WebSocketEvent.notification(error, level="error"))
                    continue
                manager.join(session_room(session_uuid), websocket)
                await websocket.send_json(WebSocketEvent.notification("Joined doubt session", level="info"))

            elif message_type == ClientMessageType.LEAVE_DOUBT_SESSION.value:
                session_uuid = _parse_session_id(doubt_session_id)
                if session_uuid is not None:
                    manager.leave(session_room(session_uuid), websocket)
                    await websocket.send_json(WebSocketEvent.notification("Left doubt session", level="info"))

            elif message_type == ClientMessageType.PING.value:
                await websocket.send_json({"type": EventType.PONG.value, "timestamp": message.get("timestamp")})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user: {user_id}", extra={"user_id": user_id})
    finally:
        manager.disconnect(websocket, user_id)


@router.get("/stats")
async def get_websocket_stats(request: Request, current_user=Depends(get_current_user)):
    """Get WebSocket connection statistics (Admin only)."""
    if current_user.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Admin role required")
    manager: ConnectionManager = request.app.state.connection_manager
    return {
        "total_connections": manager.get_connection_count(),
        "connected_users": manager.get_user_count(),
        "active_rooms": manager.get_room_count()
    }
