import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from chatsync.utils.ids import utcnow
from chatsync.utils.realtime_bus import Broadcaster


logger = logging.getLogger(__name__)


@dataclass
class PresenceEntry:
    user_id: str
    connections: Set[str] = field(default_factory=set)
    last_seen: Optional[datetime] = None

    @property
    def status(self) -> str:
        return "online" if self.connections else "offline"

    def as_event(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "status": self.status,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }


class PresenceTracker:
    """
    In-memory presence for the sockets of this process.

    A user is online while at least one of their connections is open.
    ``user:status`` goes to every connected client when a user's first
    connection opens and when the last one closes. Nothing here is shared
    across processes.
    """

    def __init__(self, broadcaster: Broadcaster) -> None:
        self._broadcaster = broadcaster
        self._entries: Dict[str, PresenceEntry] = {}

    async def connect(self, user_id: str, connection_id: str) -> PresenceEntry:
        entry = self._entries.setdefault(user_id, PresenceEntry(user_id=user_id))
        came_online = not entry.connections
        entry.connections.add(connection_id)
        entry.last_seen = utcnow()
        if came_online:
            logger.info("User %s is online", user_id)
            await self._broadcaster.to_everyone("user:status", entry.as_event(), skip_connection=connection_id)
        return entry

    async def disconnect(self, user_id: str, connection_id: str) -> bool:
        """Drop one connection; returns True when the user went offline."""
        entry = self._entries.get(user_id)
        if entry is None or connection_id not in entry.connections:
            return False
        entry.connections.discard(connection_id)
        entry.last_seen = utcnow()
        if entry.connections:
            return False
        logger.info("User %s is offline", user_id)
        await self._broadcaster.to_everyone("user:status", entry.as_event())
        return True

    def snapshot(self, user_id: str) -> Dict[str, Any]:
        entry = self._entries.get(user_id)
        if entry is None:
            return {"user_id": user_id, "status": "offline", "last_seen": None}
        return entry.as_event()

    def is_online(self, user_id: str) -> bool:
        entry = self._entries.get(user_id)
        return bool(entry and entry.connections)

    def online_users(self) -> List[str]:
        return sorted(user_id for user_id, entry in self._entries.items() if entry.connections)
