import json
import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pymongo.errors import PyMongoError

from chatsync.config import Settings
from chatsync.exceptions import ChatError, UpstreamError, ValidationFailed
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.services.access_guard import ConversationAccessGuard
from chatsync.services.chat_service import ChatService
from chatsync.services.presence_service import PresenceTracker
from chatsync.services.typing_service import TypingBroker
from chatsync.utils.dependencies import (
    app_settings,
    get_chat_service,
    get_connection_manager,
    get_conversation_repository,
    get_presence_tracker,
    get_typing_broker,
    get_user_repository,
)
from chatsync.utils.ids import parse_object_id, utcnow
from chatsync.utils.realtime_bus import envelope
from chatsync.utils.security import user_id_from_token
from chatsync.utils.websocket_manager import ConnectionManager, conversation_room


logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _conversation_id(data: Any) -> Optional[str]:
    # clients may send the bare id or {"conversation_id": id}
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        return data.get("conversation_id")
    return None


def _room_key(conversation_id: str) -> str:
    # rooms are keyed by the canonical lowercase hex form
    return str(parse_object_id(conversation_id))


class SocketSession:
    """Inbound event handling for one authenticated or anonymous socket."""

    def __init__(
        self,
        connection_id: str,
        user_id: Optional[str],
        manager: ConnectionManager,
        guard: ConversationAccessGuard,
        typing: TypingBroker,
        chat_service: ChatService,
    ) -> None:
        self.connection_id = connection_id
        self.user_id = user_id
        self._manager = manager
        self._guard = guard
        self._typing = typing
        self._chat_service = chat_service
        self._handlers = {
            "conversation:join": self.on_join,
            "conversation:leave": self.on_leave,
            "typing:start": self.on_typing_start,
            "typing:stop": self.on_typing_stop,
            "message:react": self.on_react,
            "ping": self.on_ping,
        }

    async def send(self, event: str, data: Dict[str, Any]) -> None:
        await self._manager.send_to_connection(self.connection_id, envelope(event, data))

    async def dispatch(self, event: Any, data: Any) -> None:
        handler = self._handlers.get(event) if isinstance(event, str) else None
        if handler is None:
            await self.send("error", {"event": event, "code": "unknown_event", "message": "Unknown event"})
            return
        try:
            await handler(data)
        except ChatError as exc:
            await self.send("error", {"event": event, "code": exc.code, "message": exc.message})
        except PyMongoError as exc:
            logger.warning("Store failure while handling %s: %s", event, exc)
            error = UpstreamError()
            await self.send("error", {"event": event, "code": error.code, "message": error.message})

    def _require_user(self) -> str:
        if not self.user_id:
            raise ValidationFailed("Authentication required")
        return self.user_id

    def _require_joined(self, data: Any) -> str:
        self._require_user()
        conversation_id = _conversation_id(data)
        if not conversation_id:
            raise ValidationFailed("conversation_id is required")
        conversation_id = _room_key(conversation_id)
        if not self._manager.in_room(self.connection_id, conversation_room(conversation_id)):
            raise ValidationFailed("Join the conversation first")
        return conversation_id

    async def on_join(self, data: Any) -> None:
        user_id = self._require_user()
        conversation_id = _conversation_id(data)
        if not conversation_id:
            raise ValidationFailed("conversation_id is required")
        conversation = await self._guard.resolve(conversation_id, user_id)
        conversation_id = str(conversation["_id"])
        self._manager.join(self.connection_id, conversation_room(conversation_id))
        await self.send("conversation:joined", {"conversation_id": conversation_id})

    async def on_leave(self, data: Any) -> None:
        conversation_id = _conversation_id(data)
        if not conversation_id:
            raise ValidationFailed("conversation_id is required")
        conversation_id = _room_key(conversation_id)
        room = conversation_room(conversation_id)
        if self.user_id and self._manager.in_room(self.connection_id, room):
            if self.user_id in self._typing.typing_users(conversation_id):
                await self._typing.stop(conversation_id, self.user_id, self.connection_id)
        self._manager.leave(self.connection_id, room)
        await self.send("conversation:left", {"conversation_id": conversation_id})

    async def on_typing_start(self, data: Any) -> None:
        conversation_id = self._require_joined(data)
        await self._typing.start(conversation_id, self.user_id, self.connection_id)

    async def on_typing_stop(self, data: Any) -> None:
        conversation_id = self._require_joined(data)
        await self._typing.stop(conversation_id, self.user_id, self.connection_id)

    async def on_react(self, data: Any) -> None:
        user_id = self._require_user()
        if not isinstance(data, dict):
            raise ValidationFailed("message_id and reaction are required")
        await self._chat_service.add_reaction(data.get("message_id"), user_id, data.get("reaction"))

    async def on_ping(self, data: Any) -> None:
        await self.send("pong", {})


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    manager: ConnectionManager = Depends(get_connection_manager),
    presence: PresenceTracker = Depends(get_presence_tracker),
    typing: TypingBroker = Depends(get_typing_broker),
    chat_service: ChatService = Depends(get_chat_service),
    conversation_repo: ConversationRepository = Depends(get_conversation_repository),
    user_repo: UserRepository = Depends(get_user_repository),
    settings: Settings = Depends(app_settings),
):
    # JWT via query string: ?token=...; no token means an anonymous socket
    user_id = None
    token = websocket.query_params.get("token")
    if token:
        try:
            user_id = user_id_from_token(token, settings)
        except (jwt.InvalidTokenError, ValidationFailed):
            await websocket.close(code=4401)
            return

    connection_id = await manager.connect(websocket, user_id)
    session = SocketSession(
        connection_id,
        user_id,
        manager,
        ConversationAccessGuard(conversation_repo),
        typing,
        chat_service,
    )
    logger.info("Socket %s connected (user=%s)", connection_id, user_id or "anonymous")

    try:
        if user_id:
            await presence.connect(user_id, connection_id)
        await session.send("connection:ready", {"connection_id": connection_id, "user_id": user_id})

        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except ValueError:
                await session.send("error", {"event": None, "code": "invalid_payload", "message": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await session.send("error", {"event": None, "code": "invalid_payload", "message": "Expected an object"})
                continue
            await session.dispatch(msg.get("event"), msg.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(connection_id)
        await typing.drop_connection(connection_id)
        if user_id and await presence.disconnect(user_id, connection_id):
            try:
                await user_repo.touch_last_seen(user_id, utcnow())
            except PyMongoError as exc:
                logger.warning("Could not persist last_seen for %s: %s", user_id, exc)
        logger.info("Socket %s disconnected", connection_id)
