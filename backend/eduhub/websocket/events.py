"""
WebSocket event types, room names and event builders.
"""
from enum import Enum
from typing import Dict, Any, Optional
from datetime import datetime
from uuid import UUID


class EventType(str, Enum):
    """Events pushed to clients."""
    NEW_DOUBT_SESSION = "newDoubtSession"
    NEW_MESSAGE = "newMessage"
    NEW_NOTIFICATION = "newNotification"
    DOUBT_SESSION_CLOSED = "doubtSessionClosed"

    # Connection bookkeeping
    NOTIFICATION = "notification"
    PONG = "pong"


class ClientMessageType(str, Enum):
    """Frames a client may send over its socket."""
    JOIN_DOUBT_SESSION = "joinDoubtSession"
    LEAVE_DOUBT_SESSION = "leaveDoubtSession"
    PING = "ping"


def personal_room(user_id) -> str:
    return f"user:{user_id}"


def session_room(doubt_session_id) -> str:
    return f"doubt:{doubt_session_id}"


def excerpt(text: Optional[str], length: int) -> str:
    text = text or ""
    return text[:length] + ("..." if len(text) > length else "")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _str(value) -> Optional[str]:
    return str(value) if value is not None else None


class WebSocketEvent:
    """WebSocket event builder."""

    @staticmethod
    def create_event(event_type: EventType, data: Dict[str, Any], room: Optional[str] = None) -> Dict[str, Any]:
        event = {
            "type": event_type.value,
            "data": data,
            "timestamp": datetime.utcnow().isoformat()
        }
        if room:
            event["room"] = room
        return event

    @staticmethod
    def new_doubt_session(
        doubt_session_id: UUID,
        student_name: str,
        doubt_excerpt: str,
        school_name: Optional[str],
        grade: Optional[int],
    ) -> Dict[str, Any]:
        return WebSocketEvent.create_event(
            EventType.NEW_DOUBT_SESSION,
            {
                "doubt_session_id": str(doubt_session_id),
                "student_name": student_name,
                "excerpt": doubt_excerpt,
                "school_name": school_name,
                "grade": grade,
            },
        )

    @staticmethod
    def new_message(message, sender_name: Optional[str] = None, sender_avatar: Optional[str] = None) -> Dict[str, Any]:
        """message is a persisted ChatMessage."""
        return WebSocketEvent.create_event(
            EventType.NEW_MESSAGE,
            {
                "id": str(message.id),
                "doubt_session_id": str(message.doubt_session_id),
                "sender_id": _str(message.sender_id),
                "sender_role": message.sender_role.value,
                "sender_name": sender_name,
                "sender_avatar": sender_avatar,
                "message_text": message.message_text,
                "attachment_url": message.attachment_url,
                "created_at": _iso(message.created_at),
            },
            room=session_room(message.doubt_session_id),
        )

    @staticmethod
    def new_notification(
        notification_id: UUID,
        notification_type: str,
        message: str,
        doubt_excerpt: str,
        created_at: datetime,
        doubt_session_id: UUID,
    ) -> Dict[str, Any]:
        return WebSocketEvent.create_event(
            EventType.NEW_NOTIFICATION,
            {
                "id": str(notification_id),
                "type": notification_type,
                "message": message,
                "excerpt": doubt_excerpt,
                "timestamp": _iso(created_at),
                "read": False,
                "doubt_session_id": str(doubt_session_id),
            },
        )

    @staticmethod
    def doubt_session_closed(doubt_session_id: UUID, closed_by_name: str, status: str = "closed") -> Dict[str, Any]:
        return WebSocketEvent.create_event(
            EventType.DOUBT_SESSION_CLOSED,
            {
                "doubt_session_id": str(doubt_session_id),
                "closed_by_name": closed_by_name,
                "status": status,
            },
            room=session_room(doubt_session_id),
        )

    @staticmethod
    def notification(message: str, level: str = "info") -> Dict[str, Any]:
        """Connection-level acknowledgement (joined room, connected, errors)."""
        return WebSocketEvent.create_event(
            EventType.NOTIFICATION,
            {
                "message": message,
                "level": level
            }
        )
