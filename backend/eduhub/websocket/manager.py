"""
WebSocket connection manager: named rooms of live sockets.
"""
import asyncio
import logging
from typing import Dict, Set, Optional
from fastapi import WebSocket

from eduhub.websocket.events import personal_room

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Tracks live sockets per user and per room. A socket joins its user's
    personal room on connect and joins/leaves doubt-session rooms on request.
    Nothing here is persisted; events for rooms with no sockets are dropped.
    """

    def __init__(self):
        # Active connections: {user_id: {websocket1, websocket2, ...}}
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        # Rooms: {room_name: {websocket1, ...}}
        self.rooms: Dict[str, Set[WebSocket]] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Remember the server loop so emit() works from worker and timer threads."""
        self._loop = loop

    async def connect(self, websocket: WebSocket, user_id: str):
        """Accept a socket and join it to the user's personal room."""
        await websocket.accept()
        if self._loop is None:
            self.bind_loop(asyncio.get_running_loop())

        self.active_connections.setdefault(user_id, set()).add(websocket)
        self.join(personal_room(user_id), websocket)
        logger.info(f"WebSocket connected for user: {user_id}", extra={"user_id": user_id})

    def disconnect(self, websocket: WebSocket, user_id: str):
        """Forget a socket and drop it from every room."""
        if user_id in self.active_connections:
            self.active_connections[user_id].discard(websocket)
            if not self.active_connections[user_id]:
                del self.active_connections[user_id]

        for room in [name for name, members in self.rooms.items() if websocket in members]:
            self.leave(room, websocket)

        logger.info(f"WebSocket disconnected for user: {user_id}", extra={"user_id": user_id})

    def join(self, room: str, websocket: WebSocket) -> None:
        self.rooms.setdefault(room, set()).add(websocket)
        logger.debug(f"Socket joined room {room}", extra={"room": room})

    def leave(self, room: str, websocket: WebSocket) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.rooms[room]
        logger.debug(f"Socket left room {room}", extra={"room": room})

    async def send_to_room(self, room: str, message: dict) -> int:
        """Send to every socket in room. Returns how many sockets received it."""
        delivered = 0
        stale = []
        for websocket in list(self.rooms.get(room, ())):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.error(f"Error sending to room {room}: {e}", extra={"room": room})
                stale.append(websocket)

        for websocket in stale:
            self.leave(room, websocket)
        return delivered

    def emit(self, room: str, message: dict) -> None:
        """
        Fire-and-forget delivery to a room. Safe to call from the event loop,
        from threadpool request handlers and from timer threads.
        """
        if not self.rooms.get(room):
            logger.debug(f"No subscribers in room {room}; dropping {message.get('type')}", extra={"room": room})
            return

        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning(f"No running event loop bound; dropping event for {room}", extra={"room": room})
            return

        coro = self.send_to_room(room, message)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            loop.create_task(coro)
        else:
            asyncio.run_coroutine_threadsafe(coro, loop)

    def get_connection_count(self) -> int:
        """Get total number of active connections."""
        return sum(len(connections) for connections in self.active_connections.values())

    def get_user_count(self) -> int:
        """Get number of connected users."""
        return len(self.active_connections)

    def get_room_count(self) -> int:
        return len(self.rooms)

    def is_user_connected(self, user_id: str) -> bool:
        """Check if user is connected."""
        return bool(self.active_connections.get(user_id))
