"""
Message relay: fans chat messages and doubt lifecycle events out to rooms.

Delivery is at-most-once and best effort. Persisted ChatMessages are the
source of truth; clients that miss an event re-fetch history.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from eduhub.config import settings
from eduhub.models import ChatMessage, DoubtSession, Notification, User
from eduhub.websocket.events import WebSocketEvent, excerpt, personal_room, session_room

logger = logging.getLogger(__name__)


class RoomTransport(Protocol):
    """Anything that can push an event to a named room without blocking."""

    def emit(self, room: str, message: Dict[str, Any]) -> None:
        ...


class MessageRelay:
    def __init__(self, transport: RoomTransport):
        self.transport = transport

    def _publish(self, room: str, event: Dict[str, Any]) -> None:
        try:
            self.transport.emit(room, event)
        except Exception:
            # Relay is a liveness optimisation; the caller's write already succeeded
            logger.exception(
                "Failed to publish %s to %s", event.get("type"), room,
                extra={"room": room, "event": event.get("type")},
            )
            return
        logger.debug(
            "Published %s to %s", event.get("type"), room,
            extra={"room": room, "event": event.get("type")},
        )

    def new_doubt_assigned(self, doubt: DoubtSession, student: User, school_name: Optional[str]) -> None:
        """Tell the assigned trainer a student has opened a doubt with them."""
        event = WebSocketEvent.new_doubt_session(
            doubt.id,
            student_name=student.name,
            doubt_excerpt=excerpt(doubt.initial_doubt_text, settings.DOUBT_EXCERPT_LENGTH),
            school_name=school_name,
            grade=doubt.grade,
        )
        self._publish(personal_room(doubt.trainer_id), event)

    def new_message(self, message: ChatMessage, sender: Optional[User] = None) -> None:
        event = WebSocketEvent.new_message(
            message,
            sender_name=sender.name if sender else None,
            sender_avatar=sender.profile_picture if sender else None,
        )
        self._publish(session_room(message.doubt_session_id), event)

    def doubt_reply(self, doubt: DoubtSession, notification: Notification) -> None:
        """Ping the student's personal room when a trainer answers."""
        event = WebSocketEvent.new_notification(
            notification.id,
            notification.type.value,
            notification.message,
            doubt_excerpt=excerpt(doubt.initial_doubt_text, settings.NOTIFICATION_EXCERPT_LENGTH),
            created_at=notification.created_at,
            doubt_session_id=doubt.id,
        )
        self._publish(personal_room(doubt.student_id), event)

    def doubt_closed(self, doubt: DoubtSession, closed_by: User) -> None:
        """Broadcast a terminal status (closed or cancelled) to the session room."""
        event = WebSocketEvent.doubt_session_closed(doubt.id, closed_by.name, status=doubt.status.value)
        self._publish(session_room(doubt.id), event)
