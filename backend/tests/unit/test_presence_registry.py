import pytest

from chatline.domain.presence.calls import GroupCallRegistry, clean_member_ids
from chatline.domain.presence.registry import SessionRegistry


@pytest.mark.asyncio
async def test_identify_and_lookup():
    registry = SessionRegistry()

    assert await registry.identify("sid-1", "user-1", "alice") is None
    assert await registry.lookup("user-1") == "sid-1"
    assert await registry.online_users() == [{"id": "user-1", "name": "alice"}]
    assert await registry.count() == 1


@pytest.mark.asyncio
async def test_second_connection_supersedes_first():
    registry = SessionRegistry()
    await registry.identify("sid-1", "user-1", "alice")

    superseded = await registry.identify("sid-2", "user-1", "alice")

    assert superseded == "sid-1"
    assert await registry.lookup("user-1") == "sid-2"
    assert await registry.online_users() == [{"id": "user-1", "name": "alice"}]


@pytest.mark.asyncio
async def test_dropping_superseded_connection_keeps_user_online():
    registry = SessionRegistry()
    await registry.identify("sid-1", "user-1", "alice")
    await registry.identify("sid-2", "user-1", "alice")

    dropped = await registry.drop("sid-1")

    assert dropped is not None and dropped.user_id == "user-1"
    assert await registry.lookup("user-1") == "sid-2"

    await registry.drop("sid-2")
    assert await registry.lookup("user-1") is None
    assert await registry.online_users() == []


@pytest.mark.asyncio
async def test_reidentify_same_connection_as_other_user():
    registry = SessionRegistry()
    await registry.identify("sid-1", "user-1", "alice")

    assert await registry.identify("sid-1", "user-2", "bob") is None
    assert await registry.lookup("user-1") is None
    assert await registry.lookup("user-2") == "sid-1"


@pytest.mark.asyncio
async def test_drop_unknown_connection_is_noop():
    registry = SessionRegistry()
    assert await registry.drop("missing") is None


def test_clean_member_ids_accepts_ids_and_objects():
    members = ["u1", {"id": "u2"}, {"_id": "u3"}, {"name": "x"}, None, "", 7]
    assert clean_member_ids(members) == ["u1", "u2", "u3", "7"]
    assert clean_member_ids("u1") == []


@pytest.mark.asyncio
async def test_group_call_discarded_when_last_participant_leaves():
    calls = GroupCallRegistry()
    await calls.start("g1", "u1", "voice")
    assert await calls.join("g1", "u2") is not None
    assert await calls.join("missing", "u2") is None
    assert await calls.calls_for("u2") == ["g1"]

    await calls.leave("g1", "u1")
    assert (await calls.get("g1")).participants == {"u2"}
    await calls.leave("g1", "u2")
    assert await calls.get("g1") is None
    assert await calls.calls_for("u2") == []
