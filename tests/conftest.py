"""Shared fixtures: in-memory repositories, a recording broadcaster and an API client."""

import asyncio
import copy
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import AutoReconnect

from chatsync.config import Settings
from chatsync.main import create_app
from chatsync.services.chat_service import ChatService
from chatsync.services.conversation_service import ConversationService
from chatsync.utils.dependencies import (
    get_conversation_repository,
    get_message_repository,
    get_user_repository,
)
from chatsync.utils.ids import utcnow
from chatsync.utils.realtime_bus import Broadcaster
from chatsync.utils.security import create_access_token
from chatsync.utils.websocket_manager import ConnectionManager


class InMemoryConversationRepository:

    def __init__(self) -> None:
        self.docs: Dict[ObjectId, Dict[str, Any]] = {}
        self.fail_projection = 0

    def seed(self, members: List[str], **fields) -> Dict[str, Any]:
        now = utcnow()
        doc = {
            "_id": ObjectId(),
            "name": "",
            "is_group": len(members) > 2,
            "is_global": False,
            "admin_id": None,
            "members": list(members),
            "last_message": None,
            "last_message_at": None,
            "unread_counters": {m: 0 for m in members},
            "created_at": now,
            "updated_at": now,
        }
        doc.update(fields)
        self.docs[doc["_id"]] = doc
        return copy.deepcopy(doc)

    def seed_global(self, members: Optional[List[str]] = None) -> Dict[str, Any]:
        return self.seed(list(members or []), name="Global Chat", is_group=True, is_global=True,
                         unread_counters={m: 0 for m in members or []})

    def stored(self, conversation_id) -> Dict[str, Any]:
        return self.docs[ObjectId(str(conversation_id))]

    async def get_by_id(self, conversation_id):
        await asyncio.sleep(0)
        doc = self.docs.get(conversation_id)
        return copy.deepcopy(doc) if doc else None

    async def find_global(self):
        for doc in self.docs.values():
            if doc.get("is_global"):
                return copy.deepcopy(doc)
        return None

    async def ensure_global(self, name):
        existing = await self.find_global()
        if existing:
            return existing
        return copy.deepcopy(self.seed([], name=name, is_group=True, is_global=True))

    async def add_member(self, conversation_id, user_id):
        await asyncio.sleep(0)
        doc = self.docs[conversation_id]
        if user_id in doc["members"]:
            return False
        doc["members"].append(user_id)
        doc["unread_counters"][user_id] = 0
        return True

    async def find_direct(self, user_a, user_b):
        for doc in self.docs.values():
            if not doc["is_group"] and not doc["is_global"] and sorted(doc["members"]) == sorted([user_a, user_b]):
                return copy.deepcopy(doc)
        return None

    async def create(self, doc):
        doc = dict(doc)
        doc.setdefault("created_at", utcnow())
        doc.setdefault("updated_at", doc["created_at"])
        doc["_id"] = ObjectId()
        self.docs[doc["_id"]] = copy.deepcopy(doc)
        return doc

    async def list_for_user(self, user_id, limit=200):
        docs = [d for d in self.docs.values() if user_id in d["members"] and not d["is_global"]]
        docs.sort(key=lambda d: (d["last_message_at"] is not None, d["last_message_at"] or d["updated_at"]), reverse=True)
        return copy.deepcopy(docs[:limit])

    async def apply_new_message(self, conversation_id, sender_id, recipient_ids, created_at):
        # yield first so concurrent sends interleave like real I/O
        await asyncio.sleep(0)
        if self.fail_projection:
            self.fail_projection -= 1
            raise AutoReconnect("primary stepped down")
        doc = self.docs.get(conversation_id)
        if doc is None:
            return None
        counters = doc.setdefault("unread_counters", {})
        for member in recipient_ids:
            if member != sender_id:
                counters[member] = counters.get(member, 0) + 1
        counters[sender_id] = 0
        if doc["last_message_at"] is None or created_at > doc["last_message_at"]:
            doc["last_message_at"] = created_at
        return copy.deepcopy(doc)

    async def set_last_message(self, conversation_id, snapshot, created_at):
        await asyncio.sleep(0)
        doc = self.docs.get(conversation_id)
        if doc is None or doc["last_message_at"] != created_at:
            return False
        doc["last_message"] = dict(snapshot)
        return True

    async def reset_unread(self, conversation_id, user_id):
        self.docs[conversation_id]["unread_counters"][user_id] = 0


class InMemoryMessageRepository:

    def __init__(self) -> None:
        self.docs: Dict[ObjectId, Dict[str, Any]] = {}

    async def insert(self, doc):
        doc["_id"] = ObjectId()
        self.docs[doc["_id"]] = copy.deepcopy(doc)
        return doc

    async def get_by_id(self, message_id):
        doc = self.docs.get(message_id)
        return copy.deepcopy(doc) if doc else None

    async def list_page(self, conversation_id, page=1, limit=50):
        docs = [d for d in self.docs.values() if d["conversation_id"] == conversation_id]
        docs.sort(key=lambda d: (d["created_at"], d["_id"]), reverse=True)
        skip = (page - 1) * limit
        return copy.deepcopy(docs[skip:skip + limit])

    async def mark_seen(self, conversation_id, message_ids, reader_id):
        modified = 0
        for message_id in message_ids:
            doc = self.docs.get(message_id)
            if doc is None or doc["conversation_id"] != conversation_id:
                continue
            if doc["sender_id"] == reader_id or reader_id in doc["read_by"]:
                continue
            doc["read_by"].append(reader_id)
            doc["status"] = "seen"
            modified += 1
        return modified

    async def replace_reaction(self, message_id, user_id, reaction, reacted_at):
        doc = self.docs.get(message_id)
        if doc is None:
            return None
        reactions = doc.setdefault("reactions", [])
        for entry in reactions:
            if entry["user_id"] == user_id:
                entry.update(reaction=reaction, created_at=reacted_at)
                break
        else:
            reactions.append({"user_id": user_id, "reaction": reaction, "created_at": reacted_at})
        doc["updated_at"] = reacted_at
        return copy.deepcopy(doc)


class InMemoryUserRepository:

    def __init__(self) -> None:
        self.profiles: Dict[str, Dict[str, Any]] = {}

    async def get_profile(self, user_id):
        doc = self.profiles.get(user_id)
        return dict(doc) if doc else None

    async def get_profiles(self, user_ids):
        return {uid: dict(self.profiles[uid]) for uid in user_ids if uid in self.profiles}

    async def upsert_profile(self, user_id, fields):
        doc = self.profiles.setdefault(user_id, {"_id": user_id, "user_id": user_id})
        doc.update(fields)
        return dict(doc)

    async def touch_last_seen(self, user_id, seen_at):
        doc = self.profiles.setdefault(user_id, {"_id": user_id, "user_id": user_id})
        doc["last_seen_at"] = seen_at


class RecordingBroadcaster(Broadcaster):

    def __init__(self) -> None:
        super().__init__(ConnectionManager())
        self.routes: List[Dict[str, Any]] = []

    async def _dispatch(self, route):
        self.routes.append(route)
        await self.deliver(route)

    def events(self, room: Optional[str] = None, event: Optional[str] = None) -> List[Dict[str, Any]]:
        found = []
        for route in self.routes:
            if room is not None and route.get("room") != room:
                continue
            if event is not None and route["message"]["event"] != event:
                continue
            found.append(route["message"]["data"])
        return found


@pytest.fixture
def conversation_repo():
    return InMemoryConversationRepository()


@pytest.fixture
def message_repo():
    return InMemoryMessageRepository()


@pytest.fixture
def user_repo():
    return InMemoryUserRepository()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def chat_service(message_repo, conversation_repo, user_repo, broadcaster):
    return ChatService(message_repo, conversation_repo, user_repo, broadcaster, retry_attempts=3, retry_backoff=0)


@pytest.fixture
def conversation_service(conversation_repo, user_repo):
    return ConversationService(conversation_repo, user_repo)


@pytest.fixture
def settings(tmp_path):
    settings = Settings()
    settings.jwt_secret = "test-secret"
    settings.jwt_algorithm = "HS256"
    settings.redis_url = None
    settings.typing_ttl_seconds = 0.3
    settings.projection_retry_backoff = 0
    settings.upload_dir = str(tmp_path / "uploads")
    settings.max_upload_bytes = 1024
    return settings


@pytest.fixture
def token_for(settings):
    def _token(user_id: str) -> str:
        return create_access_token(user_id, settings)
    return _token


@pytest.fixture
def auth_headers(token_for):
    def _headers(user_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user_id)}"}
    return _headers


@pytest.fixture
def app(settings, conversation_repo, message_repo, user_repo):
    app = create_app(settings, use_database=False)
    app.dependency_overrides[get_conversation_repository] = lambda: conversation_repo
    app.dependency_overrides[get_message_repository] = lambda: message_repo
    app.dependency_overrides[get_user_repository] = lambda: user_repo
    yield app
    app.dependency_overrides = {}


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
