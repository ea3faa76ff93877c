import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from chatsync.utils.realtime_bus import Broadcaster


logger = logging.getLogger(__name__)


@dataclass
class _TypingEntry:
    connection_id: str
    expiry: asyncio.Task


class TypingBroker:
    """
    Relays typing signals to the rest of a conversation room.

    Each start arms an expiry timer; when it fires, or when the typing
    connection goes away, the broker relays ``typing:stop`` on the client's
    behalf so an abrupt disconnect cannot leave an indicator stuck.
    """

    def __init__(self, broadcaster: Broadcaster, ttl_seconds: float = 6.0) -> None:
        self._broadcaster = broadcaster
        self._ttl = ttl_seconds
        self._typing: Dict[str, Dict[str, _TypingEntry]] = {}

    def typing_users(self, conversation_id: str) -> Set[str]:
        return set(self._typing.get(conversation_id, {}))

    async def start(self, conversation_id: str, user_id: str, connection_id: str) -> None:
        bucket = self._typing.setdefault(conversation_id, {})
        previous = bucket.pop(user_id, None)
        if previous is not None:
            previous.expiry.cancel()
        bucket[user_id] = _TypingEntry(
            connection_id=connection_id,
            expiry=asyncio.create_task(self._expire_after(conversation_id, user_id)),
        )
        await self._relay("typing:start", conversation_id, user_id, skip_connection=connection_id)

    async def stop(self, conversation_id: str, user_id: str, connection_id: Optional[str] = None) -> None:
        entry = self._pop(conversation_id, user_id)
        if entry is not None:
            entry.expiry.cancel()
        await self._relay("typing:stop", conversation_id, user_id, skip_connection=connection_id)

    async def drop_connection(self, connection_id: str) -> List[Tuple[str, str]]:
        """Stop every typing entry owned by a closed connection."""
        stale = [
            (conversation_id, user_id)
            for conversation_id, bucket in self._typing.items()
            for user_id, entry in bucket.items()
            if entry.connection_id == connection_id
        ]
        for conversation_id, user_id in stale:
            entry = self._pop(conversation_id, user_id)
            if entry is not None:
                entry.expiry.cancel()
            await self._relay("typing:stop", conversation_id, user_id, skip_connection=connection_id)
        return stale

    async def close(self) -> None:
        for bucket in self._typing.values():
            for entry in bucket.values():
                entry.expiry.cancel()
        self._typing.clear()

    async def _expire_after(self, conversation_id: str, user_id: str) -> None:
        await asyncio.sleep(self._ttl)
        entry = self._pop(conversation_id, user_id)
        if entry is None:
            return
        logger.debug("Typing signal of %s in %s expired", user_id, conversation_id)
        await self._relay("typing:stop", conversation_id, user_id, skip_connection=entry.connection_id)

    def _pop(self, conversation_id: str, user_id: str) -> Optional[_TypingEntry]:
        bucket = self._typing.get(conversation_id)
        if not bucket:
            return None
        entry = bucket.pop(user_id, None)
        if not bucket:
            del self._typing[conversation_id]
        return entry

    async def _relay(self, event: str, conversation_id: str, user_id: str, skip_connection: Optional[str]) -> None:
        await self._broadcaster.to_conversation(
            conversation_id,
            event,
            {"user_id": user_id, "conversation_id": conversation_id},
            skip_connection=skip_connection,
        )
