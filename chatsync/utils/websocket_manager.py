import logging
import uuid
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState


logger = logging.getLogger(__name__)


def conversation_room(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


class ConnectionManager:
    """
    Registry of the sockets connected to this process and the rooms they joined.

    A connection is identified by a generated id so one user may hold several
    sockets at once. Sends are best effort: a closed or failing socket is
    skipped and the event is lost for that client.
    """

    def __init__(self) -> None:
        self.active_connections: Dict[str, WebSocket] = {}
        self.connection_users: Dict[str, Optional[str]] = {}
        self.rooms: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = {}

    async def connect(self, websocket: WebSocket, user_id: Optional[str] = None) -> str:
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.active_connections[connection_id] = websocket
        self.connection_users[connection_id] = user_id
        self._memberships[connection_id] = set()
        if user_id:
            self.join(connection_id, user_room(user_id))
        return connection_id

    def disconnect(self, connection_id: str) -> Optional[str]:
        for room in self._memberships.pop(connection_id, set()):
            members = self.rooms.get(room)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self.rooms[room]
        self.active_connections.pop(connection_id, None)
        return self.connection_users.pop(connection_id, None)

    def join(self, connection_id: str, room: str) -> None:
        if connection_id not in self.active_connections:
            return
        self.rooms.setdefault(room, set()).add(connection_id)
        self._memberships[connection_id].add(room)

    def leave(self, connection_id: str, room: str) -> None:
        members = self.rooms.get(room)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self.rooms[room]
        memberships = self._memberships.get(connection_id)
        if memberships is not None:
            memberships.discard(room)

    def in_room(self, connection_id: str, room: str) -> bool:
        return connection_id in self.rooms.get(room, set())

    def user_of(self, connection_id: str) -> Optional[str]:
        return self.connection_users.get(connection_id)

    async def send_to_connection(self, connection_id: str, message: Dict[str, Any]) -> bool:
        websocket = self.active_connections.get(connection_id)
        if websocket is None or websocket.application_state != WebSocketState.CONNECTED:
            return False
        try:
            await websocket.send_json(message)
            return True
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("Dropped event for connection %s: %s", connection_id, exc)
            return False

    async def send_to_room(self, room: str, message: Dict[str, Any], skip: Optional[str] = None) -> int:
        delivered = 0
        for connection_id in list(self.rooms.get(room, ())):
            if connection_id == skip:
                continue
            if await self.send_to_connection(connection_id, message):
                delivered += 1
        return delivered

    async def send_to_all(self, message: Dict[str, Any], skip: Optional[str] = None) -> int:
        delivered = 0
        for connection_id in list(self.active_connections):
            if connection_id == skip:
                continue
            if await self.send_to_connection(connection_id, message):
                delivered += 1
        return delivered
