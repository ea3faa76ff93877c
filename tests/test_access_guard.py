import asyncio

import pytest

from chatsync.exceptions import AccessDeniedError, NotFoundError
from chatsync.services.access_guard import ConversationAccessGuard


@pytest.fixture
def guard(conversation_repo):
    return ConversationAccessGuard(conversation_repo)


@pytest.mark.asyncio
async def test_member_resolves_conversation(guard, conversation_repo):
    convo = conversation_repo.seed(["x", "y"])

    resolved = await guard.resolve(str(convo["_id"]), "x")

    assert resolved["_id"] == convo["_id"]


@pytest.mark.asyncio
async def test_non_member_is_denied_like_unknown(guard, conversation_repo):
    convo = conversation_repo.seed(["x", "y"])

    with pytest.raises(AccessDeniedError) as denied:
        await guard.resolve(str(convo["_id"]), "z")

    # rendered the same way as an unknown conversation
    assert isinstance(denied.value, NotFoundError)
    assert denied.value.status_code == 404
    assert denied.value.message == "Conversation not found"


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["0123456789abcdef01234567", "nope", "", None, 42])
async def test_unknown_or_malformed_ids_are_not_found(guard, value):
    with pytest.raises(NotFoundError):
        await guard.resolve(value, "x")


@pytest.mark.asyncio
async def test_global_conversation_admits_newcomer(guard, conversation_repo):
    room = conversation_repo.seed_global(["a"])

    resolved = await guard.resolve(str(room["_id"]), "b")

    assert "b" in resolved["members"]
    stored = conversation_repo.stored(room["_id"])
    assert stored["members"] == ["a", "b"]
    assert stored["unread_counters"]["b"] == 0


@pytest.mark.asyncio
async def test_global_join_is_idempotent(guard, conversation_repo):
    room = conversation_repo.seed_global(["a"])

    await guard.resolve(str(room["_id"]), "b")
    await guard.resolve(str(room["_id"]), "b")

    assert conversation_repo.stored(room["_id"])["members"] == ["a", "b"]


@pytest.mark.asyncio
async def test_concurrent_global_joins_add_user_once(guard, conversation_repo):
    room = conversation_repo.seed_global([])

    results = await asyncio.gather(*(guard.resolve(str(room["_id"]), "b") for _ in range(5)))

    assert conversation_repo.stored(room["_id"])["members"] == ["b"]
    assert all(r["members"] == ["b"] for r in results)


@pytest.mark.asyncio
async def test_membership_is_never_removed(guard, conversation_repo):
    room = conversation_repo.seed_global(["a", "b"])

    for user in ("c", "a", "d", "b"):
        await guard.resolve(str(room["_id"]), user)

    assert conversation_repo.stored(room["_id"])["members"] == ["a", "b", "c", "d"]
