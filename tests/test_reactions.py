import pytest
import pytest_asyncio

from chatsync.exceptions import AccessDeniedError, NotFoundError, ValidationFailed


@pytest_asyncio.fixture
async def sent(chat_service, conversation_repo):
    convo = conversation_repo.seed(["x", "y"])
    return await chat_service.send_message("x", str(convo["_id"]), text="react to me")


@pytest.mark.asyncio
async def test_second_reaction_replaces_the_first(chat_service, message_repo, sent):
    await chat_service.add_reaction(str(sent["_id"]), "y", "👍")
    updated = await chat_service.add_reaction(str(sent["_id"]), "y", "❤️")

    assert [(r["user_id"], r["reaction"]) for r in updated["reactions"]] == [("y", "❤️")]
    assert len(message_repo.docs[sent["_id"]]["reactions"]) == 1


@pytest.mark.asyncio
async def test_same_reaction_twice_keeps_one_entry(chat_service, sent):
    await chat_service.add_reaction(str(sent["_id"]), "y", "👍")
    updated = await chat_service.add_reaction(str(sent["_id"]), "y", "👍")

    assert [(r["user_id"], r["reaction"]) for r in updated["reactions"]] == [("y", "👍")]


@pytest.mark.asyncio
async def test_each_user_keeps_their_own_reaction(chat_service, sent):
    await chat_service.add_reaction(str(sent["_id"]), "x", "😂")
    updated = await chat_service.add_reaction(str(sent["_id"]), "y", "👍")

    assert sorted((r["user_id"], r["reaction"]) for r in updated["reactions"]) == [("x", "😂"), ("y", "👍")]


@pytest.mark.asyncio
async def test_reaction_is_broadcast_to_the_room(chat_service, broadcaster, sent):
    await chat_service.add_reaction(str(sent["_id"]), "y", "👍")

    cid = str(sent["conversation_id"])
    assert broadcaster.events(room=f"conversation:{cid}", event="message:react") == [
        {"message_id": str(sent["_id"]), "user_id": "y", "reaction": "👍", "conversation_id": cid}
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("reaction", ["", "   ", None, "x" * 33])
async def test_invalid_reaction_is_rejected(chat_service, message_repo, sent, reaction):
    with pytest.raises(ValidationFailed):
        await chat_service.add_reaction(str(sent["_id"]), "y", reaction)

    assert message_repo.docs[sent["_id"]]["reactions"] == []


@pytest.mark.asyncio
async def test_unknown_message_is_not_found(chat_service):
    with pytest.raises(NotFoundError) as missing:
        await chat_service.add_reaction("0123456789abcdef01234567", "y", "👍")
    assert missing.value.message == "Message not found"

    with pytest.raises(NotFoundError):
        await chat_service.add_reaction("bogus", "y", "👍")


@pytest.mark.asyncio
async def test_non_member_cannot_react(chat_service, message_repo, sent):
    with pytest.raises(AccessDeniedError):
        await chat_service.add_reaction(str(sent["_id"]), "outsider", "👍")

    assert message_repo.docs[sent["_id"]]["reactions"] == []
