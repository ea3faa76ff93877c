from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from motor.motor_asyncio import AsyncIOMotorDatabase
from starlette.requests import HTTPConnection

from chatsync.config import Settings, get_settings
from chatsync.database.connection import mongo_db_dependency
from chatsync.exceptions import ValidationFailed
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.services.chat_service import ChatService
from chatsync.services.conversation_service import ConversationService
from chatsync.services.presence_service import PresenceTracker
from chatsync.services.typing_service import TypingBroker
from chatsync.utils.realtime_bus import Broadcaster
from chatsync.utils.security import user_id_from_token
from chatsync.utils.websocket_manager import ConnectionManager


bearer_scheme = HTTPBearer(auto_error=False)


def app_settings(connection: HTTPConnection) -> Settings:
    return getattr(connection.app.state, "settings", None) or get_settings()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(app_settings),
) -> dict:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        user_id = user_id_from_token(credentials.credentials, settings)
    except (jwt.InvalidTokenError, ValidationFailed):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return {"_id": user_id}


def get_conversation_repository(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> ConversationRepository:
    return ConversationRepository(db)


def get_message_repository(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> MessageRepository:
    return MessageRepository(db)


def get_user_repository(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> UserRepository:
    return UserRepository(db)


def get_connection_manager(connection: HTTPConnection) -> ConnectionManager:
    return connection.app.state.connection_manager


def get_broadcaster(connection: HTTPConnection) -> Broadcaster:
    return connection.app.state.broadcaster


def get_presence_tracker(connection: HTTPConnection) -> PresenceTracker:
    return connection.app.state.presence


def get_typing_broker(connection: HTTPConnection) -> TypingBroker:
    return connection.app.state.typing


def get_chat_service(
    message_repo: MessageRepository = Depends(get_message_repository),
    conversation_repo: ConversationRepository = Depends(get_conversation_repository),
    user_repo: UserRepository = Depends(get_user_repository),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    settings: Settings = Depends(app_settings),
) -> ChatService:
    return ChatService(
        message_repo,
        conversation_repo,
        user_repo,
        broadcaster,
        retry_attempts=settings.projection_retry_attempts,
        retry_backoff=settings.projection_retry_backoff,
    )


def get_conversation_service(
    conversation_repo: ConversationRepository = Depends(get_conversation_repository),
    user_repo: UserRepository = Depends(get_user_repository),
    settings: Settings = Depends(app_settings),
) -> ConversationService:
    return ConversationService(conversation_repo, user_repo, global_name=settings.global_room_name)
