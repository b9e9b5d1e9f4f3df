"""Socket.IO namespace for presence, typing, live message delivery and call signalling."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import jwt
import socketio

from chatline.domain.groups.repo import get_repository as get_group_repository
from chatline.domain.identity.repo import get_repository as get_user_repository
from chatline.infra import jwt as jwt_helper
from chatline.obs import metrics as obs_metrics

from .calls import GroupCallRegistry, clean_member_ids, get_call_registry
from .registry import Session, SessionRegistry, get_registry

logger = logging.getLogger(__name__)

_namespace: "PresenceNamespace" | None = None

_GROUP_ROOM_PREFIX = "group:"


def _claims_identity(token: Any) -> Optional[tuple[str, str]]:
	"""Return ``(user_id, name)`` from a self-asserted token, or None."""
	if not isinstance(token, str) or not token.strip():
		return None
	try:
		claims = jwt_helper.decode_unverified(token.strip())
	except jwt.InvalidTokenError:
		return None
	user_id = str(claims.get("id") or claims.get("sub") or "").strip()
	if not user_id:
		return None
	name = str(claims.get("username") or claims.get("name") or user_id)
	return user_id, name


def _payload_dict(payload: Any) -> dict:
	return payload if isinstance(payload, dict) else {}


class PresenceNamespace(socketio.AsyncNamespace):
	"""Default namespace: connections identify with ``user-joined`` and are tracked in the registry."""

	def __init__(
		self,
		registry: Optional[SessionRegistry] = None,
		namespace: str = "/",
		calls: Optional[GroupCallRegistry] = None,
	) -> None:
		super().__init__(namespace)
		self.registry = registry or get_registry()
		self.calls = calls or get_call_registry()

	async def trigger_event(self, event: str, *args):
		# Client events are dash-separated; handlers use underscores.
		return await super().trigger_event(event.replace("-", "_"), *args)

	@staticmethod
	def group_room(group_id: str) -> str:
		return f"{_GROUP_ROOM_PREFIX}{group_id}"

	@staticmethod
	def group_call_room(group_id: str) -> str:
		return f"group-call:{group_id}"

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		logger.info("presence connect sid=%s", sid)

	async def on_disconnect(self, sid: str, reason: Any = None) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		await self._leave(sid)

	async def on_user_joined(self, sid: str, payload: Any = None) -> None:
		obs_metrics.socket_event(self.namespace, "user-joined")
		token = payload.get("token") if isinstance(payload, dict) else payload
		identity = _claims_identity(token)
		if identity is None:
			await self.emit("error", {"code": "invalid_token"}, room=sid)
			return
		user_id, name = identity
		superseded = await self.registry.identify(sid, user_id, name)
		if superseded:
			logger.info("presence superseded user_id=%s old_sid=%s new_sid=%s", user_id, superseded, sid)
		await self._join_member_groups(sid, user_id)
		await _mark_presence(user_id, online=True)
		await self._broadcast_online()
		await self.emit("user-joined-broadcast", {"id": user_id, "name": name})

	async def on_get_online_users(self, sid: str, payload: Any = None) -> None:
		obs_metrics.socket_event(self.namespace, "get-online-users")
		await self.emit("online-users", await self.registry.online_users(), room=sid)

	async def on_user_left(self, sid: str, payload: Any = None) -> dict:
		obs_metrics.socket_event(self.namespace, "user-left")
		session = await self._leave(sid)
		return {"ok": True, "userId": session.user_id if session else _payload_dict(payload).get("userId")}

	async def on_typing(self, sid: str, payload: Any = None) -> None:
		await self._relay_typing(sid, payload, "user-typing")

	async def on_stop_typing(self, sid: str, payload: Any = None) -> None:
		await self._relay_typing(sid, payload, "user-stop-typing")

	async def on_send_private_message(self, sid: str, payload: Any = None) -> None:
		obs_metrics.socket_event(self.namespace, "send-private-message")
		data = _payload_dict(payload)
		recipient_id = data.get("recipientId")
		target = await self.registry.lookup(str(recipient_id)) if recipient_id else None
		if target is None:
			obs_metrics.inc_presence_dropped("received-message")
			return
		await self.emit("received-message", data.get("payload"), room=target)

	async def on_send_message(self, sid: str, payload: Any = None) -> None:
		obs_metrics.socket_event(self.namespace, "send-message")
		await self.emit("received-message", payload, skip_sid=sid)

	async def on_join_group(self, sid: str, payload: Any = None) -> None:
		group_id = _payload_dict(payload).get("groupId")
		if group_id:
			await self.enter_room(sid, self.group_room(str(group_id)))

	async def on_send_group_message(self, sid: str, payload: Any = None) -> None:
		obs_metrics.socket_event(self.namespace, "send-group-message")
		group_id = _payload_dict(payload).get("groupId")
		if not group_id:
			return
		room = self.group_room(str(group_id))
		await self._ensure_in_room(sid, room)
		await self.emit("received-group-message", payload, room=room)

	async def on_group_typing(self, sid: str, payload: Any = None) -> None:
		await self._relay_group(sid, payload, "group-typing")

	async def on_group_stop_typing(self, sid: str, payload: Any = None) -> None:
		await self._relay_group(sid, payload, "group-stop-typing")

	# ------------------------------------------------------------------
	# One-to-one calls

	async def on_call_request(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		sender = await self._sender(sid, data)
		body = {"from": sender, "fromName": data.get("fromName"), "type": data.get("type"), "offer": data.get("offer")}
		if not await self._relay_to_user(data.get("to"), "call-request", body):
			await self.emit("call-failed", {"reason": "User is offline"}, room=sid)

	async def on_call_answer(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		body = {"from": await self._sender(sid, data), "answer": data.get("answer")}
		await self._relay_to_user(data.get("to"), "call-answer", body)

	async def on_call_accepted(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		await self._relay_to_user(data.get("to"), "call-accepted", {"from": await self._sender(sid, data)})

	async def on_call_failed(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		body = {"reason": data.get("reason"), "message": data.get("message")}
		await self._relay_to_user(data.get("to"), "call-failed", body)

	async def on_call_declined(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		await self._relay_to_user(data.get("to"), "call-declined", {"from": await self._sender(sid, data)})

	async def on_call_ended(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		await self._relay_to_user(data.get("to"), "call-ended", {"from": await self._sender(sid, data)})

	async def on_ice_candidate(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		body = {"from": await self._sender(sid, data), "candidate": data.get("candidate")}
		await self._relay_to_user(data.get("to"), "ice-candidate", body)

	# ------------------------------------------------------------------
	# Group calls

	async def on_group_call_request(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		group_id = data.get("groupId")
		initiator = await self._sender(sid, data)
		members = clean_member_ids(data.get("members"))
		if not group_id or not initiator or not members:
			await self.emit("group-call-error", {"message": "No valid group members found."}, room=sid)
			return
		group_id = str(group_id)
		call = await self.calls.start(group_id, initiator, str(data.get("type") or "voice"))
		await self.enter_room(sid, self.group_call_room(group_id))
		body = {
			"groupId": group_id,
			"groupName": data.get("groupName"),
			"members": members,
			"from": initiator,
			"fromName": data.get("fromName"),
			"type": call.call_type,
		}
		sent, offline = 0, []
		for member_id in members:
			if member_id == initiator:
				continue
			if await self._relay_to_user(member_id, "group-call-request", body):
				sent += 1
			else:
				offline.append(member_id)
		logger.info("group call request group_id=%s from=%s notified=%s offline=%s", group_id, initiator, sent, len(offline))
		if sent == 0:
			await self.emit("group-call-error", {"message": "No group members are currently online."}, room=sid)
		elif offline:
			await self.emit(
				"group-call-partial",
				{
					"message": f"{len(offline)} member(s) are offline and won't receive the call.",
					"onlineCount": sent,
					"offlineCount": len(offline),
				},
				room=sid,
			)

	async def on_group_call_join(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		group_id = str(data.get("groupId") or "")
		user_id = await self._sender(sid, data, key="userId")
		call = await self.calls.join(group_id, user_id) if group_id and user_id else None
		if call is None:
			await self.emit("group-call-error", {"message": "Group call not found"}, room=sid)
			return
		room = self.group_call_room(group_id)
		await self.enter_room(sid, room)
		names = {entry["id"]: entry["name"] for entry in await self.registry.online_users()}
		participants = [
			{"id": pid, "name": names.get(pid, "Unknown")} for pid in sorted(call.participants) if pid != user_id
		]
		await self.emit("group-call-joined", {"groupId": group_id, "participants": participants}, room=sid)
		await self.emit(
			"group-participant-joined",
			{"userId": user_id, "userName": data.get("userName") or names.get(user_id)},
			room=room,
			skip_sid=sid,
		)

	async def on_group_call_offer(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		sender = await self._sender(sid, data)
		names = {entry["id"]: entry["name"] for entry in await self.registry.online_users()}
		body = {"from": sender, "fromName": names.get(sender, "Unknown"), "offer": data.get("offer")}
		await self._relay_to_user(data.get("to"), "group-call-offer", body)

	async def on_group_call_answer(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		body = {"from": await self._sender(sid, data), "answer": data.get("answer")}
		await self._relay_to_user(data.get("to"), "group-call-answer", body)

	async def on_group_ice_candidate(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		body = {"from": await self._sender(sid, data), "candidate": data.get("candidate")}
		await self._relay_to_user(data.get("to"), "group-ice-candidate", body)

	async def on_group_call_declined(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		group_id = str(data.get("groupId") or "")
		user_id = await self._sender(sid, data, key="userId")
		if group_id and user_id and await self.calls.leave(group_id, user_id) is not None:
			await self.emit(
				"group-participant-declined", {"userId": user_id}, room=self.group_call_room(group_id), skip_sid=sid
			)

	async def on_group_call_left(self, sid: str, payload: Any = None) -> None:
		data = _payload_dict(payload)
		group_id = str(data.get("groupId") or "")
		user_id = await self._sender(sid, data, key="userId")
		if not group_id or not user_id or await self.calls.leave(group_id, user_id) is None:
			return
		room = self.group_call_room(group_id)
		await self.leave_room(sid, room)
		await self.emit("group-participant-left", {"userId": user_id}, room=room, skip_sid=sid)

	async def on_group_call_ended(self, sid: str, payload: Any = None) -> None:
		group_id = str(_payload_dict(payload).get("groupId") or "")
		if group_id and await self.calls.end(group_id) is not None:
			await self.emit("group-call-ended", {"groupId": group_id}, room=self.group_call_room(group_id))
			logger.info("group call ended group_id=%s", group_id)

	# ------------------------------------------------------------------
	# Helpers

	async def _sender(self, sid: str, data: dict, key: str = "from") -> Optional[str]:
		"""The identified user behind ``sid``, else the id the client claims."""
		session = await self.registry.session_for(sid)
		if session is not None:
			return session.user_id
		claimed = data.get(key)
		return str(claimed) if claimed else None

	async def _relay_to_user(self, user_id: Any, event: str, body: dict) -> bool:
		obs_metrics.socket_event(self.namespace, event)
		target = await self.registry.lookup(str(user_id)) if user_id else None
		if target is None:
			obs_metrics.inc_presence_dropped(event)
			return False
		await self.emit(event, body, room=target)
		return True

	async def _ensure_in_room(self, sid: str, room: str) -> None:
		if room not in self.rooms(sid):
			await self.enter_room(sid, room)

	async def _relay_typing(self, sid: str, payload: Any, event: str) -> None:
		obs_metrics.socket_event(self.namespace, event)
		data = _payload_dict(payload)
		sender = data.get("from")
		if sender is None:
			session = await self.registry.session_for(sid)
			sender = session.user_id if session else None
		recipient_id = data.get("to")
		if recipient_id:
			target = await self.registry.lookup(str(recipient_id))
			if target is not None:
				await self.emit(event, {"from": sender, "to": recipient_id}, room=target)
			return
		await self.emit(event, {"from": sender}, skip_sid=sid)

	async def _relay_group(self, sid: str, payload: Any, event: str) -> None:
		obs_metrics.socket_event(self.namespace, event)
		data = _payload_dict(payload)
		group_id = data.get("groupId")
		if not group_id:
			return
		session = await self.registry.session_for(sid)
		body = {
			"groupId": str(group_id),
			"id": data.get("userId") or (session.user_id if session else None),
			"username": data.get("userName") or (session.name if session else None),
		}
		room = self.group_room(str(group_id))
		await self._ensure_in_room(sid, room)
		await self.emit(event, body, room=room, skip_sid=sid)

	async def _join_member_groups(self, sid: str, user_id: str) -> None:
		try:
			groups = await get_group_repository().list_for_member(user_id)
		except Exception:
			logger.warning("presence group lookup failed user_id=%s", user_id, exc_info=True)
			return
		for group in groups:
			await self.enter_room(sid, self.group_room(group.id))

	async def _clear_group_typing(self, sid: str, session: Session) -> None:
		for room in self.rooms(sid):
			if not room.startswith(_GROUP_ROOM_PREFIX):
				continue
			body = {"groupId": room[len(_GROUP_ROOM_PREFIX):], "id": session.user_id, "username": session.name}
			await self.emit("group-stop-typing", body, room=room, skip_sid=sid)

	async def _leave_calls(self, sid: str, user_id: str) -> None:
		for group_id in await self.calls.calls_for(user_id):
			await self.calls.leave(group_id, user_id)
			await self.emit(
				"group-participant-left", {"userId": user_id}, room=self.group_call_room(group_id), skip_sid=sid
			)

	async def _leave(self, sid: str) -> Optional[Session]:
		current = await self.registry.session_for(sid)
		if current is None:
			return None
		await self._clear_group_typing(sid, current)
		session = await self.registry.drop(sid)
		if session is None:
			return None
		still_online = await self.registry.lookup(session.user_id) is not None
		if not still_online:
			await self._leave_calls(sid, session.user_id)
			await _mark_presence(session.user_id, online=False)
			await self.emit("user-left-broadcast", session.user_id)
		await self._broadcast_online()
		logger.info("presence leave sid=%s user_id=%s still_online=%s", sid, session.user_id, still_online)
		return session

	async def _broadcast_online(self) -> None:
		users = await self.registry.online_users()
		obs_metrics.presence_online(len(users))
		await self.emit("online-users", users)


async def _mark_presence(user_id: str, *, online: bool) -> None:
	try:
		await get_user_repository().mark_presence(user_id, online=online, at=datetime.now(timezone.utc))
	except Exception:
		logger.warning("presence bookkeeping failed user_id=%s", user_id, exc_info=True)


def set_namespace(ns: Optional[PresenceNamespace]) -> None:
	global _namespace
	_namespace = ns


def get_namespace() -> Optional[PresenceNamespace]:
	return _namespace


async def notify_user(user_id: str, event: str, payload: Any) -> bool:
	"""Push ``event`` to the user's live connection; False when nobody is listening."""
	if _namespace is None:
		return False
	target = await _namespace.registry.lookup(user_id)
	if target is None:
		return False
	obs_metrics.socket_event(_namespace.namespace, event)
	try:
		await _namespace.emit(event, payload, room=target)
	except Exception:
		logger.warning("socket notify failed event=%s user_id=%s", event, user_id, exc_info=True)
		return False
	return True


async def notify_users(user_ids: Iterable[str], event: str, payload: Any) -> int:
	delivered = 0
	for user_id in user_ids:
		if await notify_user(user_id, event, payload):
			delivered += 1
	return delivered


async def join_group_room(user_ids: Iterable[str], group_id: str) -> None:
	if _namespace is None:
		return
	for user_id in user_ids:
		target = await _namespace.registry.lookup(user_id)
		if target is not None:
			await _namespace.enter_room(target, PresenceNamespace.group_room(group_id))


async def leave_group_room(user_id: str, group_id: str) -> None:
	if _namespace is None:
		return
	target = await _namespace.registry.lookup(user_id)
	if target is not None:
		await _namespace.leave_room(target, PresenceNamespace.group_room(group_id))
