import pytest

from chatsync.services.presence_service import PresenceTracker


@pytest.fixture
def presence(broadcaster):
    return PresenceTracker(broadcaster)


def status_events(broadcaster):
    return [
        (route["skip"], route["message"]["data"]["user_id"], route["message"]["data"]["status"])
        for route in broadcaster.routes
        if route["message"]["event"] == "user:status"
    ]


@pytest.mark.asyncio
async def test_first_connection_announces_online(presence, broadcaster):
    await presence.connect("u", "c1")

    assert presence.is_online("u")
    assert status_events(broadcaster) == [("c1", "u", "online")]
    assert broadcaster.routes[0]["scope"] == "all"


@pytest.mark.asyncio
async def test_second_connection_is_silent(presence, broadcaster):
    await presence.connect("u", "c1")
    await presence.connect("u", "c2")

    assert status_events(broadcaster) == [("c1", "u", "online")]


@pytest.mark.asyncio
async def test_offline_only_after_last_connection_closes(presence, broadcaster):
    await presence.connect("u", "c1")
    await presence.connect("u", "c2")

    assert await presence.disconnect("u", "c1") is False
    assert presence.is_online("u")

    assert await presence.disconnect("u", "c2") is True
    assert not presence.is_online("u")
    assert status_events(broadcaster)[-1] == (None, "u", "offline")
    assert presence.snapshot("u")["last_seen"] is not None


@pytest.mark.asyncio
async def test_unknown_disconnect_is_ignored(presence, broadcaster):
    assert await presence.disconnect("ghost", "c9") is False
    assert broadcaster.routes == []


@pytest.mark.asyncio
async def test_snapshot_and_listing(presence):
    await presence.connect("b", "c1")
    await presence.connect("a", "c2")

    assert presence.online_users() == ["a", "b"]
    assert presence.snapshot("a")["status"] == "online"
    assert presence.snapshot("nobody") == {"user_id": "nobody", "status": "offline", "last_seen": None}
