from datetime import datetime, timedelta, timezone

import pytest
import ulid

from chatline.domain.common.errors import ForbiddenError, NotFoundError, ValidationError
from chatline.domain.identity.models import Relation
from chatline.domain.identity.repo import get_repository as get_user_repository
from chatline.domain.media import StoredMedia, Upload
from chatline.domain.media import storage as media_storage
from chatline.domain.status import service as status_service
from chatline.domain.status import sockets as status_sockets
from chatline.domain.status.service import StatusService
from chatline.infra.auth import AuthenticatedUser


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingStore:
    def __init__(self, *, fail_delete: bool = False) -> None:
        self.fail_delete = fail_delete
        self.stored: list[str] = []
        self.deleted: list[str] = []

    async def store(self, upload: Upload, *, policy: str, owner_id: str) -> StoredMedia:
        key = f"{policy}/{owner_id}/{upload.filename}"
        self.stored.append(key)
        return StoredMedia(
            key=key,
            url=f"http://testserver/uploads/{key}",
            kind=upload.kind,
            content_type=upload.content_type,
            size=upload.size,
        )

    async def delete(self, url_or_key: str) -> None:
        self.deleted.append(url_or_key)
        if self.fail_delete:
            raise RuntimeError("storage offline")


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def service(clock):
    return StatusService(clock=clock)


@pytest.fixture
def captured(monkeypatch):
    events: dict[str, list] = {"uploaded": [], "viewed": [], "deleted": []}

    async def _uploaded(owner_id, friend_ids, payload):
        events["uploaded"].append((owner_id, list(friend_ids), payload))

    async def _viewed(owner_id, payload):
        events["viewed"].append((owner_id, payload))

    async def _deleted(friend_ids, payload):
        events["deleted"].append((list(friend_ids), payload))

    monkeypatch.setattr(status_sockets, "emit_status_uploaded", _uploaded)
    monkeypatch.setattr(status_sockets, "emit_status_viewed", _viewed)
    monkeypatch.setattr(status_sockets, "emit_status_deleted", _deleted)
    return events


def _auth(user) -> AuthenticatedUser:
    return AuthenticatedUser(id=user.id, username=user.username)


async def _text_status(service, owner, text="hello"):
    return await service.create_status(_auth(owner), content={"type": "text", "text": text})


@pytest.mark.asyncio
async def test_create_text_status_sets_expiry_and_notifies_friends(service, clock, captured, make_user, befriend):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await befriend(alice, bob)

    status = await _text_status(service, alice)

    assert status.user_id == alice.id
    assert status.content.type == "text"
    assert status.content.background_color == "#000000"
    assert status.total_views == 0
    assert status.expires_at == clock.now + timedelta(hours=24)
    owner_id, friend_ids, payload = captured["uploaded"][0]
    assert owner_id == alice.id
    assert friend_ids == [bob.id]
    assert payload["user_name"] == "alice"
    assert payload["status"]["id"] == status.id


@pytest.mark.asyncio
async def test_create_status_rejects_missing_and_ambiguous_content(service, captured, make_user):
    alice = await make_user("alice")
    upload = Upload(filename="a.png", content_type="image/png", data=b"png")

    with pytest.raises(ValidationError) as missing:
        await service.create_status(_auth(alice))
    assert missing.value.reason == "no_content"

    with pytest.raises(ValidationError) as ambiguous:
        await service.create_status(_auth(alice), upload=upload, content={"type": "text", "text": "x"})
    assert ambiguous.value.reason == "ambiguous_content"

    with pytest.raises(ValidationError) as blank:
        await service.create_status(_auth(alice), content='{"type": "text", "text": "   "}')
    assert blank.value.reason == "text_required"
    assert captured["uploaded"] == []


@pytest.mark.asyncio
async def test_create_media_status_uses_store(monkeypatch, service, captured, make_user):
    store = RecordingStore()
    monkeypatch.setattr(media_storage, "_store", store)
    alice = await make_user("alice")
    upload = Upload(filename="clip.mp4", content_type="video/mp4", data=b"video-bytes")

    status = await service.create_status(_auth(alice), upload=upload, text="caption")

    assert status.content.type == "video"
    assert status.content.text == "caption"
    assert status.content.url.endswith(f"status/{alice.id}/clip.mp4")
    assert store.stored == [f"status/{alice.id}/clip.mp4"]


@pytest.mark.asyncio
async def test_rejected_upload_does_not_spend_quota(monkeypatch, service, captured, make_user):
    monkeypatch.setattr(status_service.settings, "status_uploads_per_hour", 1)
    alice = await make_user("alice")

    for _ in range(3):
        with pytest.raises(ValidationError):
            await service.create_status(_auth(alice), content={"type": "text", "text": " "})

    status = await _text_status(service, alice)
    assert status.user_id == alice.id


@pytest.mark.asyncio
async def test_stored_media_released_when_status_insert_fails(monkeypatch, service, captured, make_user):
    store = RecordingStore()
    monkeypatch.setattr(media_storage, "_store", store)
    alice = await make_user("alice")

    async def _broken_create(*args, **kwargs):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(service._repo, "create", _broken_create)
    upload = Upload(filename="pic.png", content_type="image/png", data=b"png")

    with pytest.raises(RuntimeError):
        await service.create_status(_auth(alice), upload=upload)

    assert store.deleted == [f"http://testserver/uploads/status/{alice.id}/pic.png"]
    assert captured["uploaded"] == []


@pytest.mark.asyncio
async def test_viewing_own_status_is_not_recorded(service, captured, make_user):
    alice = await make_user("alice")
    status = await _text_status(service, alice)

    result = await service.mark_viewed(_auth(alice), status.id)

    assert result.message == "Cannot view own status"
    assert result.was_new_view is False
    assert result.total_views == 0
    assert captured["viewed"] == []


@pytest.mark.asyncio
async def test_friend_view_is_idempotent(service, clock, captured, make_user, befriend):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await befriend(alice, bob)
    status = await _text_status(service, alice)

    first = await service.mark_viewed(_auth(bob), status.id)
    clock.advance(minutes=5)
    second = await service.mark_viewed(_auth(bob), status.id.lower())

    assert first.was_new_view is True
    assert first.message == "Status marked as viewed"
    assert first.total_views == 1
    assert second.was_new_view is False
    assert second.message == "Status already viewed"
    assert second.total_views == 1
    assert second.status.viewed_by == [bob.id]
    assert len(captured["viewed"]) == 1
    owner_id, payload = captured["viewed"][0]
    assert owner_id == alice.id
    assert payload["viewer_id"] == bob.id
    assert payload["viewer_name"] == "bob"
    assert payload["total_views"] == 1


@pytest.mark.asyncio
async def test_non_friend_and_blocked_viewers_are_forbidden(service, captured, make_user, befriend):
    alice = await make_user("alice")
    carol = await make_user("carol")
    dave = await make_user("dave")
    await befriend(alice, dave)
    users = get_user_repository()
    await users.add_relation(alice.id, Relation.BLOCKED_USERS, dave.id)
    await users.add_relation(dave.id, Relation.BLOCKED_BY, alice.id)
    status = await _text_status(service, alice)

    with pytest.raises(ForbiddenError) as stranger:
        await service.mark_viewed(_auth(carol), status.id)
    assert stranger.value.reason == "not_friends"

    with pytest.raises(ForbiddenError) as blocked:
        await service.mark_viewed(_auth(dave), status.id)
    assert blocked.value.reason == "blocked"
    assert captured["viewed"] == []


@pytest.mark.asyncio
async def test_invalid_and_unknown_ids(service, captured, make_user):
    alice = await make_user("alice")

    with pytest.raises(ValidationError):
        await service.mark_viewed(_auth(alice), "not-an-id")
    with pytest.raises(NotFoundError):
        await service.mark_viewed(_auth(alice), str(ulid.new()))


@pytest.mark.asyncio
async def test_expired_statuses_disappear_from_feed_and_views(service, clock, captured, make_user, befriend):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await befriend(alice, bob)
    status = await _text_status(service, alice)

    feed = await service.list_feed(_auth(bob))
    assert [group.user_id for group in feed.status_groups] == [alice.id]

    clock.advance(hours=24)

    feed = await service.list_feed(_auth(bob))
    assert feed.status_groups == []
    mine = await service.list_my_statuses(_auth(alice))
    assert mine.count == 0
    with pytest.raises(NotFoundError):
        await service.mark_viewed(_auth(bob), status.id)


@pytest.mark.asyncio
async def test_feed_orders_unviewed_groups_first(service, clock, captured, make_user, befriend):
    me = await make_user("me")
    older = await make_user("older")
    newer = await make_user("newer")
    await befriend(me, older)
    await befriend(me, newer)

    old_status = await _text_status(service, older, "first")
    clock.advance(minutes=10)
    await _text_status(service, newer, "second")
    clock.advance(minutes=1)
    await _text_status(service, me, "mine")

    feed = await service.list_feed(_auth(me))
    assert [group.user_id for group in feed.status_groups] == [newer.id, older.id]
    assert [s.content.text for s in feed.my_statuses] == ["mine"]

    await service.mark_viewed(_auth(me), old_status.id)
    clock.advance(minutes=1)
    await _text_status(service, older, "third")

    feed = await service.list_feed(_auth(me))
    assert [group.user_id for group in feed.status_groups] == [older.id, newer.id]
    assert all(group.has_unviewed for group in feed.status_groups)
    assert [s.content.text for s in feed.status_groups[0].statuses] == ["third", "first"]

    await service.mark_viewed_bulk(_auth(me), [s.id for s in feed.status_groups[0].statuses])
    feed = await service.list_feed(_auth(me))
    assert [group.user_id for group in feed.status_groups] == [newer.id, older.id]
    assert feed.status_groups[1].has_unviewed is False


@pytest.mark.asyncio
async def test_bulk_view_skips_invalid_own_and_seen(service, captured, make_user, befriend):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await befriend(alice, bob)
    first = await _text_status(service, alice, "one")
    second = await _text_status(service, alice, "two")
    mine = await _text_status(service, bob, "bob's")
    await service.mark_viewed(_auth(bob), first.id)
    captured["viewed"].clear()

    result = await service.mark_viewed_bulk(_auth(bob), [first.id, second.id, mine.id, "garbage"])

    assert result.success is True
    assert result.processed_count == 1
    assert result.total_requested == 4
    assert [s.id for s in result.updated_statuses] == [second.id]
    assert [payload["status_id"] for _, payload in captured["viewed"]] == [second.id]

    with pytest.raises(ValidationError) as empty:
        await service.mark_viewed_bulk(_auth(bob), [])
    assert empty.value.reason == "status_ids_required"
    with pytest.raises(ValidationError) as invalid:
        await service.mark_viewed_bulk(_auth(bob), ["nope"])
    assert invalid.value.reason == "invalid_status_id"


@pytest.mark.asyncio
async def test_delete_releases_media_once_even_when_store_fails(monkeypatch, service, captured, make_user, befriend):
    store = RecordingStore(fail_delete=True)
    monkeypatch.setattr(media_storage, "_store", store)
    alice = await make_user("alice")
    bob = await make_user("bob")
    await befriend(alice, bob)
    upload = Upload(filename="pic.png", content_type="image/png", data=b"png-bytes")
    status = await service.create_status(_auth(alice), upload=upload)

    await service.delete_status(_auth(alice), status.id)

    assert store.deleted == [status.content.url]
    assert captured["deleted"] == [([bob.id], {"status_id": status.id, "user_id": alice.id})]
    with pytest.raises(NotFoundError):
        await service.get_status(_auth(alice), status.id)


@pytest.mark.asyncio
async def test_delete_requires_ownership(service, captured, make_user, befriend):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await befriend(alice, bob)
    status = await _text_status(service, alice)

    with pytest.raises(NotFoundError):
        await service.delete_status(_auth(bob), status.id)
    detail = await service.get_status(_auth(bob), status.id)
    assert detail.has_user_viewed is False
    assert detail.is_expired is False
    assert captured["deleted"] == []


@pytest.mark.asyncio
async def test_blocked_viewers_hidden_from_owner_view_list(service, captured, make_user, befriend):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    await befriend(alice, bob)
    await befriend(carol, bob)
    status = await _text_status(service, bob)
    await service.mark_viewed(_auth(alice), status.id)
    await service.mark_viewed(_auth(carol), status.id)

    users = get_user_repository()
    await users.add_relation(carol.id, Relation.BLOCKED_USERS, alice.id)
    await users.add_relation(alice.id, Relation.BLOCKED_BY, carol.id)

    detail = await service.get_status(_auth(carol), status.id)
    assert detail.viewed_by == [carol.id]
    assert detail.total_views == 2
    owner_view = await service.get_status(_auth(bob), status.id)
    assert sorted(owner_view.viewed_by) == sorted([alice.id, carol.id])


@pytest.mark.asyncio
async def test_module_wrappers_delegate(monkeypatch, make_user):
    calls = []

    class FakeService:
        async def list_feed(self, auth_user):
            calls.append(auth_user.id)
            return "feed"

    monkeypatch.setattr(status_service, "_SERVICE", FakeService())
    alice = await make_user("alice")
    assert await status_service.list_feed(_auth(alice)) == "feed"
    assert calls == [alice.id]
