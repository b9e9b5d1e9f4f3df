from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
import socketio

from chatline.domain.identity.repo import get_repository as get_user_repository
from chatline.domain.presence import get_registry
from chatline.domain.presence import sockets as presence_sockets
from chatline.domain.presence.calls import get_call_registry
from chatline.domain.presence.sockets import PresenceNamespace
from chatline.domain.status.service import StatusService
from chatline.infra.auth import AuthenticatedUser


def _token(user_id: str, username: str) -> str:
	return jwt.encode({"id": user_id, "username": username}, "an-unrelated-signing-key-for-presence-tests", algorithm="HS256")


def _namespace() -> PresenceNamespace:
	server = socketio.AsyncServer(async_mode="asgi")
	namespace = PresenceNamespace()
	server.register_namespace(namespace)
	namespace.emit = AsyncMock()
	namespace.enter_room = AsyncMock()
	namespace.leave_room = AsyncMock()
	return namespace


def _events(namespace: PresenceNamespace) -> list[str]:
	return [call.args[0] for call in namespace.emit.await_args_list]


def _calls(namespace: PresenceNamespace, event: str):
	return [call for call in namespace.emit.await_args_list if call.args[0] == event]


@pytest.mark.asyncio
async def test_user_joined_registers_and_broadcasts(make_user):
	user = await make_user("alice")
	namespace = _namespace()

	await namespace.trigger_event("connect", "sid-1", {})
	await namespace.trigger_event("user-joined", "sid-1", _token(user.id, "alice"))

	assert await get_registry().lookup(user.id) == "sid-1"
	joined = _calls(namespace, "user-joined-broadcast")
	assert joined[0].args[1] == {"id": user.id, "name": "alice"}
	online = _calls(namespace, "online-users")
	assert online[-1].args[1] == [{"id": user.id, "name": "alice"}]
	stored = await get_user_repository().get(user.id)
	assert stored.is_online is True


@pytest.mark.asyncio
async def test_user_joined_accepts_token_object():
	namespace = _namespace()

	await namespace.trigger_event("user-joined", "sid-1", {"token": _token("user-9", "zed")})

	assert await get_registry().lookup("user-9") == "sid-1"


@pytest.mark.asyncio
async def test_invalid_token_is_rejected():
	namespace = _namespace()

	await namespace.trigger_event("user-joined", "sid-1", "garbage")

	assert _events(namespace) == ["error"]
	call = namespace.emit.await_args_list[0]
	assert call.args[1] == {"code": "invalid_token"}
	assert call.kwargs["room"] == "sid-1"
	assert await get_registry().count() == 0


@pytest.mark.asyncio
async def test_superseded_disconnect_keeps_user_online():
	namespace = _namespace()
	await namespace.trigger_event("user-joined", "sid-1", _token("user-1", "alice"))
	await namespace.trigger_event("user-joined", "sid-2", _token("user-1", "alice"))
	namespace.emit.reset_mock()

	await namespace.trigger_event("disconnect", "sid-1")

	assert await get_registry().lookup("user-1") == "sid-2"
	assert "user-left-broadcast" not in _events(namespace)
	assert _calls(namespace, "online-users")[-1].args[1] == [{"id": "user-1", "name": "alice"}]

	await namespace.trigger_event("disconnect", "sid-2")

	assert await get_registry().lookup("user-1") is None
	assert _calls(namespace, "user-left-broadcast")[0].args[1] == "user-1"
	assert _calls(namespace, "online-users")[-1].args[1] == []


@pytest.mark.asyncio
async def test_typing_routed_to_target_connection():
	namespace = _namespace()
	await namespace.trigger_event("user-joined", "sid-a", _token("user-a", "alice"))
	await namespace.trigger_event("user-joined", "sid-b", _token("user-b", "bob"))
	namespace.emit.reset_mock()

	await namespace.trigger_event("typing", "sid-a", {"from": "user-a", "to": "user-b"})
	await namespace.trigger_event("stop-typing", "sid-a", {"to": "user-b"})

	typing = _calls(namespace, "user-typing")[0]
	assert typing.args[1] == {"from": "user-a", "to": "user-b"}
	assert typing.kwargs["room"] == "sid-b"
	stop = _calls(namespace, "user-stop-typing")[0]
	assert stop.args[1] == {"from": "user-a", "to": "user-b"}
	assert stop.kwargs["room"] == "sid-b"


@pytest.mark.asyncio
async def test_private_message_dropped_when_recipient_offline():
	namespace = _namespace()
	await namespace.trigger_event("user-joined", "sid-a", _token("user-a", "alice"))
	namespace.emit.reset_mock()

	await namespace.trigger_event(
		"send-private-message", "sid-a", {"recipientId": "user-b", "payload": {"body": "hi"}}
	)
	assert namespace.emit.await_args_list == []

	await namespace.trigger_event("user-joined", "sid-b", _token("user-b", "bob"))
	namespace.emit.reset_mock()
	await namespace.trigger_event(
		"send-private-message", "sid-a", {"recipientId": "user-b", "payload": {"body": "hi"}}
	)
	delivered = _calls(namespace, "received-message")[0]
	assert delivered.args[1] == {"body": "hi"}
	assert delivered.kwargs["room"] == "sid-b"


@pytest.mark.asyncio
async def test_get_online_users_replies_to_caller():
	namespace = _namespace()
	await namespace.trigger_event("user-joined", "sid-a", _token("user-a", "alice"))
	namespace.emit.reset_mock()

	await namespace.trigger_event("get-online-users", "sid-a")

	call = namespace.emit.await_args_list[0]
	assert call.args == ("online-users", [{"id": "user-a", "name": "alice"}])
	assert call.kwargs["room"] == "sid-a"


@pytest.mark.asyncio
async def test_user_left_acknowledges_and_removes():
	namespace = _namespace()
	await namespace.trigger_event("user-joined", "sid-a", _token("user-a", "alice"))

	ack = await namespace.trigger_event("user-left", "sid-a", {"userId": "user-a"})

	assert ack == {"ok": True, "userId": "user-a"}
	assert await get_registry().count() == 0


@pytest.mark.asyncio
async def test_notify_user_targets_live_connection():
	namespace = _namespace()
	presence_sockets.set_namespace(namespace)
	await namespace.trigger_event("user-joined", "sid-a", _token("user-a", "alice"))
	namespace.emit.reset_mock()

	assert await presence_sockets.notify_user("user-a", "status_uploaded", {"x": 1}) is True
	assert await presence_sockets.notify_user("user-b", "status_uploaded", {"x": 1}) is False

	call = namespace.emit.await_args_list[0]
	assert call.args == ("status_uploaded", {"x": 1})
	assert call.kwargs["room"] == "sid-a"


@pytest.mark.asyncio
async def test_notify_user_swallows_emit_failures():
	namespace = _namespace()
	presence_sockets.set_namespace(namespace)
	await namespace.trigger_event("user-joined", "sid-a", _token("user-a", "alice"))
	namespace.emit = AsyncMock(side_effect=RuntimeError("transport closed"))

	assert await presence_sockets.notify_user("user-a", "status_viewed", {}) is False


async def _identify(namespace: PresenceNamespace, sid: str, user_id: str, name: str) -> None:
	await namespace.trigger_event("user-joined", sid, _token(user_id, name))


@pytest.mark.asyncio
async def test_disconnect_clears_group_typing_before_leaving():
	namespace = _namespace()
	await _identify(namespace, "sid-a", "user-a", "alice")
	namespace.rooms = MagicMock(return_value=["sid-a", "group:g1", "group-call:g2"])
	namespace.emit.reset_mock()

	await namespace.trigger_event("disconnect", "sid-a")

	assert _events(namespace)[:2] == ["group-stop-typing", "user-left-broadcast"]
	stop = _calls(namespace, "group-stop-typing")
	assert len(stop) == 1
	assert stop[0].args[1] == {"groupId": "g1", "id": "user-a", "username": "alice"}
	assert stop[0].kwargs == {"room": "group:g1", "skip_sid": "sid-a"}


@pytest.mark.asyncio
async def test_group_message_joins_sender_to_room_first():
	namespace = _namespace()
	await _identify(namespace, "sid-a", "user-a", "alice")
	namespace.emit.reset_mock()

	await namespace.trigger_event("send-group-message", "sid-a", {"groupId": "g1", "message": "hi"})

	namespace.enter_room.assert_awaited_with("sid-a", "group:g1")
	delivered = _calls(namespace, "received-group-message")[0]
	assert delivered.args[1] == {"groupId": "g1", "message": "hi"}
	assert delivered.kwargs == {"room": "group:g1"}


@pytest.mark.asyncio
async def test_group_message_skips_join_when_already_in_room():
	namespace = _namespace()
	namespace.rooms = MagicMock(return_value=["sid-a", "group:g1"])

	await namespace.trigger_event("send-group-message", "sid-a", {"groupId": "g1"})

	namespace.enter_room.assert_not_awaited()


@pytest.mark.asyncio
async def test_group_typing_payload_is_normalised():
	namespace = _namespace()
	await _identify(namespace, "sid-a", "user-a", "alice")
	namespace.emit.reset_mock()

	await namespace.trigger_event("group-typing", "sid-a", {"groupId": "g1", "extra": "dropped"})
	await namespace.trigger_event(
		"group-stop-typing", "sid-a", {"groupId": "g1", "userId": "user-a", "userName": "Alice A."}
	)

	namespace.enter_room.assert_awaited_with("sid-a", "group:g1")
	typing = _calls(namespace, "group-typing")[0]
	assert typing.args[1] == {"groupId": "g1", "id": "user-a", "username": "alice"}
	assert typing.kwargs == {"room": "group:g1", "skip_sid": "sid-a"}
	stop = _calls(namespace, "group-stop-typing")[0]
	assert stop.args[1] == {"groupId": "g1", "id": "user-a", "username": "Alice A."}


@pytest.mark.asyncio
async def test_call_request_relayed_or_failed_back_to_caller():
	namespace = _namespace()
	await _identify(namespace, "sid-a", "user-a", "alice")
	await _identify(namespace, "sid-b", "user-b", "bob")
	namespace.emit.reset_mock()

	await namespace.trigger_event(
		"call-request", "sid-a", {"to": "user-b", "fromName": "alice", "type": "video", "offer": {"sdp": "o"}}
	)
	await namespace.trigger_event("call-request", "sid-a", {"to": "user-c", "type": "voice"})

	request = _calls(namespace, "call-request")[0]
	assert request.args[1] == {"from": "user-a", "fromName": "alice", "type": "video", "offer": {"sdp": "o"}}
	assert request.kwargs == {"room": "sid-b"}
	failed = _calls(namespace, "call-failed")[0]
	assert failed.args[1] == {"reason": "User is offline"}
	assert failed.kwargs == {"room": "sid-a"}


@pytest.mark.asyncio
async def test_call_signalling_uses_identified_sender():
	namespace = _namespace()
	await _identify(namespace, "sid-a", "user-a", "alice")
	await _identify(namespace, "sid-b", "user-b", "bob")
	namespace.emit.reset_mock()

	await namespace.trigger_event("call-answer", "sid-b", {"to": "user-a", "answer": {"sdp": "a"}})
	await namespace.trigger_event("call-accepted", "sid-b", {"to": "user-a"})
	await namespace.trigger_event("ice-candidate", "sid-b", {"to": "user-a", "from": "spoofed", "candidate": "c1"})
	await namespace.trigger_event("call-ended", "sid-a", {"to": "user-b"})

	assert _calls(namespace, "call-answer")[0].args[1] == {"from": "user-b", "answer": {"sdp": "a"}}
	assert _calls(namespace, "call-accepted")[0].args[1] == {"from": "user-b"}
	ice = _calls(namespace, "ice-candidate")[0]
	assert ice.args[1] == {"from": "user-b", "candidate": "c1"}
	assert ice.kwargs == {"room": "sid-a"}
	assert _calls(namespace, "call-ended")[0].kwargs == {"room": "sid-b"}


@pytest.mark.asyncio
async def test_group_call_lifecycle_tracks_participants():
	namespace = _namespace()
	await _identify(namespace, "sid-a", "user-a", "alice")
	await _identify(namespace, "sid-b", "user-b", "bob")
	namespace.emit.reset_mock()

	await namespace.trigger_event(
		"group-call-request",
		"sid-a",
		{
			"groupId": "g1",
			"groupName": "team",
			"members": ["user-a", {"id": "user-b"}, {"_id": "user-c"}, None],
			"type": "video",
		},
	)

	request = _calls(namespace, "group-call-request")[0]
	assert request.kwargs == {"room": "sid-b"}
	assert request.args[1]["members"] == ["user-a", "user-b", "user-c"]
	partial = _calls(namespace, "group-call-partial")[0]
	assert partial.args[1]["onlineCount"] == 1
	assert partial.args[1]["offlineCount"] == 1
	assert partial.kwargs == {"room": "sid-a"}

	await namespace.trigger_event("group-call-join", "sid-b", {"groupId": "g1", "userName": "bob"})

	joined = _calls(namespace, "group-call-joined")[0]
	assert joined.args[1] == {"groupId": "g1", "participants": [{"id": "user-a", "name": "alice"}]}
	assert joined.kwargs == {"room": "sid-b"}
	announce = _calls(namespace, "group-participant-joined")[0]
	assert announce.args[1] == {"userId": "user-b", "userName": "bob"}
	assert announce.kwargs == {"room": "group-call:g1", "skip_sid": "sid-b"}
	call = await get_call_registry().get("g1")
	assert call.participants == {"user-a", "user-b"}

	await namespace.trigger_event("disconnect", "sid-b")

	left = _calls(namespace, "group-participant-left")[0]
	assert left.args[1] == {"userId": "user-b"}
	assert left.kwargs == {"room": "group-call:g1", "skip_sid": "sid-b"}

	await namespace.trigger_event("group-call-left", "sid-a", {"groupId": "g1"})

	namespace.leave_room.assert_awaited_with("sid-a", "group-call:g1")
	assert await get_call_registry().get("g1") is None


@pytest.mark.asyncio
async def test_group_call_errors_and_end():
	namespace = _namespace()
	await _identify(namespace, "sid-a", "user-a", "alice")
	namespace.emit.reset_mock()

	await namespace.trigger_event("group-call-join", "sid-a", {"groupId": "missing"})
	await namespace.trigger_event("group-call-request", "sid-a", {"groupId": "g1", "members": []})
	await namespace.trigger_event("group-call-request", "sid-a", {"groupId": "g1", "members": ["user-a", "user-z"]})

	errors = [call.args[1]["message"] for call in _calls(namespace, "group-call-error")]
	assert errors == [
		"Group call not found",
		"No valid group members found.",
		"No group members are currently online.",
	]

	await namespace.trigger_event("group-call-ended", "sid-a", {"groupId": "g1"})

	ended = _calls(namespace, "group-call-ended")[0]
	assert ended.args[1] == {"groupId": "g1"}
	assert ended.kwargs == {"room": "group-call:g1"}
	assert await get_call_registry().get("g1") is None


@pytest.mark.asyncio
async def test_status_events_reach_owner_before_friends(make_user, befriend):
	alice = await make_user("alice")
	bob = await make_user("bob")
	await befriend(alice, bob)
	namespace = _namespace()
	presence_sockets.set_namespace(namespace)
	await _identify(namespace, "sid-alice", alice.id, "alice")
	await _identify(namespace, "sid-bob", bob.id, "bob")
	namespace.emit.reset_mock()
	service = StatusService()
	owner = AuthenticatedUser(id=alice.id, username="alice")

	status = await service.create_status(owner, content={"type": "text", "text": "hello"})

	uploaded = _calls(namespace, "status_uploaded")
	assert [call.kwargs["room"] for call in uploaded] == ["sid-alice", "sid-bob"]
	assert uploaded[1].args[1]["status"]["id"] == status.id

	await service.delete_status(owner, status.id)

	deleted = _calls(namespace, "status_deleted")
	assert [call.kwargs["room"] for call in deleted] == ["sid-bob"]
	assert deleted[0].args[1] == {"status_id": status.id, "user_id": alice.id}
