"""Event fan-out to conversation rooms, personal rooms and every connection.

Components receive a ``Broadcaster`` explicitly and never reach for a shared
handle. ``LocalBroadcaster`` delivers straight to the sockets of this process;
``RedisBroadcaster`` publishes each event on a pub/sub channel and every
process subscribed to it delivers to its own sockets.

Delivery is fire-and-forget: nothing is acknowledged, retried or queued.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from chatsync.config import Settings
from chatsync.utils.websocket_manager import ConnectionManager, conversation_room, user_room


logger = logging.getLogger(__name__)


def envelope(event: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return {"event": event, "data": data}


class Broadcaster:

    def __init__(self, manager: ConnectionManager) -> None:
        self.manager = manager

    async def start(self) -> None:
        return

    async def stop(self) -> None:
        return

    async def to_conversation(
        self,
        conversation_id: str,
        event: str,
        data: Dict[str, Any],
        skip_connection: Optional[str] = None,
    ) -> None:
        await self._dispatch(
            {
                "scope": "room",
                "room": conversation_room(conversation_id),
                "skip": skip_connection,
                "message": envelope(event, data),
            }
        )

    async def to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        await self._dispatch(
            {"scope": "room", "room": user_room(user_id), "skip": None, "message": envelope(event, data)}
        )

    async def to_everyone(self, event: str, data: Dict[str, Any], skip_connection: Optional[str] = None) -> None:
        await self._dispatch({"scope": "all", "skip": skip_connection, "message": envelope(event, data)})

    async def deliver(self, route: Dict[str, Any]) -> int:
        message = route["message"]
        skip = route.get("skip")
        if route.get("scope") == "all":
            return await self.manager.send_to_all(message, skip=skip)
        return await self.manager.send_to_room(route["room"], message, skip=skip)

    async def _dispatch(self, route: Dict[str, Any]) -> None:
        raise NotImplementedError


class LocalBroadcaster(Broadcaster):

    async def _dispatch(self, route: Dict[str, Any]) -> None:
        await self.deliver(route)


class RedisBroadcaster(Broadcaster):

    def __init__(self, manager: ConnectionManager, client: redis.Redis, channel: str) -> None:
        super().__init__(manager)
        self._redis = client
        self._channel = channel
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._running = True
        self._listener = asyncio.create_task(self._listen())
        logger.info("Subscribed to realtime channel %s", self._channel)

    async def stop(self) -> None:
        self._running = False
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self._channel)
                await self._pubsub.aclose()
            except RedisError as exc:
                logger.warning("Failed to close realtime subscription: %s", exc)
            self._pubsub = None
        await self._redis.aclose()

    async def _dispatch(self, route: Dict[str, Any]) -> None:
        try:
            await self._redis.publish(self._channel, json.dumps(route))
        except RedisError as exc:
            logger.warning("Dropped %s event, publish failed: %s", route["message"].get("event"), exc)

    async def handle_raw(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            route = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed realtime payload")
            return
        await self.deliver(route)

    async def _listen(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if msg and msg.get("type") == "message":
                    await self.handle_raw(msg.get("data"))
            except RedisError as exc:
                logger.warning("Realtime subscription error: %s", exc)
                await asyncio.sleep(0.5)


def build_broadcaster(settings: Settings, manager: ConnectionManager) -> Broadcaster:
    if settings.redis_url:
        return RedisBroadcaster(manager, redis.from_url(settings.redis_url), settings.redis_channel)
    return LocalBroadcaster(manager)
