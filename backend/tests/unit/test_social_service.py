import pytest

from chatline.domain.common.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from chatline.domain.identity.models import Relation
from chatline.domain.identity.repo import get_repository as get_user_repository
from chatline.domain.social import sockets as social_sockets
from chatline.domain.social.service import SocialService
from chatline.domain.status import sockets as status_sockets
from chatline.infra.auth import AuthenticatedUser


@pytest.fixture
def notifications(monkeypatch):
    sent: list[tuple[str, object, dict]] = []

    def _recorder(name):
        async def _record(target, payload):
            sent.append((name, target, payload))

        return _record

    for name in (
        "emit_request_received",
        "emit_request_cancelled",
        "emit_request_accepted",
        "emit_request_rejected",
        "emit_friend_removed",
    ):
        monkeypatch.setattr(social_sockets, name, _recorder(name))

    async def _refresh(user_ids, payload):
        sent.append(("emit_feed_refresh", list(user_ids), payload))

    monkeypatch.setattr(status_sockets, "emit_feed_refresh", _refresh)
    return sent


def _auth(user) -> AuthenticatedUser:
    return AuthenticatedUser(id=user.id, username=user.username)


@pytest.mark.asyncio
async def test_request_accept_flow(notifications, make_user):
    service = SocialService()
    alice = await make_user("alice")
    bob = await make_user("bob")

    summary = await service.send_request(_auth(alice), bob.id)
    assert summary.friendship_status == "request_sent"
    requests = await service.list_requests(_auth(bob))
    assert [u.id for u in requests.received] == [alice.id]

    friend = await service.accept_request(_auth(bob), alice.id)

    assert friend.id == alice.id
    assert friend.friendship_status == "friends"
    users = get_user_repository()
    stored_alice = await users.get(alice.id)
    stored_bob = await users.get(bob.id)
    assert stored_alice.friends == [bob.id]
    assert stored_bob.friends == [alice.id]
    assert stored_alice.sent_requests == []
    assert stored_bob.received_requests == []
    names = [entry[0] for entry in notifications]
    assert names == ["emit_request_received", "emit_request_accepted", "emit_feed_refresh", "emit_feed_refresh"]
    assert notifications[1][1] == alice.id


@pytest.mark.asyncio
async def test_send_request_guards(notifications, make_user, befriend):
    service = SocialService()
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")

    with pytest.raises(ValidationError):
        await service.send_request(_auth(alice), alice.id)
    with pytest.raises(NotFoundError):
        await service.send_request(_auth(alice), "missing")

    await service.send_request(_auth(alice), bob.id)
    with pytest.raises(ConflictError) as duplicate:
        await service.send_request(_auth(alice), bob.id)
    assert duplicate.value.reason == "already_sent"
    with pytest.raises(ConflictError) as reverse:
        await service.send_request(_auth(bob), alice.id)
    assert reverse.value.reason == "reverse_pending"

    await befriend(alice, carol)
    with pytest.raises(ConflictError) as friends:
        await service.send_request(_auth(alice), carol.id)
    assert friends.value.reason == "already_friends"


@pytest.mark.asyncio
async def test_blocked_pair_cannot_request(notifications, make_user):
    service = SocialService()
    alice = await make_user("alice")
    bob = await make_user("bob")
    users = get_user_repository()
    await users.add_relation(bob.id, Relation.BLOCKED_USERS, alice.id)
    await users.add_relation(alice.id, Relation.BLOCKED_BY, bob.id)

    with pytest.raises(ForbiddenError):
        await service.send_request(_auth(alice), bob.id)


@pytest.mark.asyncio
async def test_reject_then_resend_clears_declined(notifications, make_user):
    service = SocialService()
    alice = await make_user("alice")
    bob = await make_user("bob")
    await service.send_request(_auth(alice), bob.id)

    await service.reject_request(_auth(bob), alice.id)

    users = get_user_repository()
    assert (await users.get(alice.id)).declined_requests == [bob.id]
    status = await service.friendship_status(_auth(alice), bob.id)
    assert status.status == "request_declined"

    await service.send_request(_auth(alice), bob.id)
    assert (await users.get(alice.id)).declined_requests == []


@pytest.mark.asyncio
async def test_cancel_request(notifications, make_user):
    service = SocialService()
    alice = await make_user("alice")
    bob = await make_user("bob")
    await service.send_request(_auth(alice), bob.id)

    message = await service.cancel_request(_auth(alice), bob.id)

    assert message == "Friend request cancelled"
    assert (await get_user_repository().get(bob.id)).received_requests == []
    with pytest.raises(NotFoundError):
        await service.cancel_request(_auth(alice), bob.id)


@pytest.mark.asyncio
async def test_remove_friend_notifies_both(notifications, make_user, befriend):
    service = SocialService()
    alice = await make_user("alice")
    bob = await make_user("bob")
    await befriend(alice, bob)

    await service.remove_friend(_auth(alice), bob.id)

    assert await service.list_friends(_auth(bob)) == []
    removed = [entry for entry in notifications if entry[0] == "emit_friend_removed"]
    assert list(removed[0][1]) == [alice.id, bob.id]
    with pytest.raises(NotFoundError):
        await service.remove_friend(_auth(alice), bob.id)


@pytest.mark.asyncio
async def test_search_puts_friends_first_and_hides_blocked(notifications, make_user, befriend):
    service = SocialService()
    me = await make_user("sam")
    await make_user("samantha")
    friend = await make_user("samuel")
    blocked = await make_user("sammy")
    await befriend(me, friend)
    await get_user_repository().add_relation(me.id, Relation.BLOCKED_USERS, blocked.id)

    results = await service.search(_auth(me), "sam")

    assert [u.name for u in results] == ["samuel", "samantha"]
    assert results[0].friendship_status == "friends"
    assert results[1].friendship_status == "none"
    assert await service.search(_auth(me), "   ") == []
