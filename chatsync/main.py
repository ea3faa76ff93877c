import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.errors import PyMongoError

from chatsync.config import Settings, get_settings
from chatsync.database.connection import close_mongo_connection, connect_to_mongo
from chatsync.exceptions import ChatError, UpstreamError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.routers.conversations import router as conversations_router
from chatsync.routers.messages import router as messages_router
from chatsync.routers.presence import router as presence_router
from chatsync.routers.socket import router as socket_router
from chatsync.routers.uploads import router as uploads_router
from chatsync.routers.users import router as users_router
from chatsync.services.conversation_service import ConversationService
from chatsync.services.presence_service import PresenceTracker
from chatsync.services.typing_service import TypingBroker
from chatsync.utils.logging import configure_logging
from chatsync.utils.realtime_bus import build_broadcaster
from chatsync.utils.websocket_manager import ConnectionManager


logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, *, use_database: bool = True) -> FastAPI:
    """
    Build the API.

    ``use_database=False`` skips the Mongo bootstrap in the lifespan; callers
    then provide repositories through dependency overrides.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):

        if use_database:
            db = await connect_to_mongo(settings)
            await ConversationRepository(db).ensure_indexes()
            await MessageRepository(db).ensure_indexes()
            await ConversationService(
                ConversationRepository(db), UserRepository(db), global_name=settings.global_room_name
            ).ensure_global_room()
        await app.state.broadcaster.start()
        logger.info("chatsync started (%s)", settings.environment)
        try:
            yield
        finally:
            await app.state.typing.close()
            await app.state.broadcaster.stop()
            if use_database:
                await close_mongo_connection()

    app = FastAPI(title="chatsync", lifespan=lifespan)

    manager = ConnectionManager()
    broadcaster = build_broadcaster(settings, manager)
    app.state.settings = settings
    app.state.connection_manager = manager
    app.state.broadcaster = broadcaster
    app.state.presence = PresenceTracker(broadcaster)
    app.state.typing = TypingBroker(broadcaster, ttl_seconds=settings.typing_ttl_seconds)

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(PyMongoError)
    async def store_error_handler(request: Request, exc: PyMongoError):
        logger.error("%s %s store failure: %s", request.method, request.url.path, exc)
        error = UpstreamError()
        return JSONResponse(status_code=error.status_code, content={"detail": error.message})

    app.include_router(conversations_router)
    app.include_router(messages_router)
    app.include_router(presence_router)
    app.include_router(uploads_router)
    app.include_router(users_router)
    app.include_router(socket_router)

    app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")

    @app.get("/")
    async def root():

        return {"message": "Chat API OK"}

    @app.get("/healthz")
    async def healthz():

        return {"status": "ok", "connections": len(manager.active_connections)}

    return app


app = create_app()
