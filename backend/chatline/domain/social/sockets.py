"""Real-time notifications for friend graph changes."""

from __future__ import annotations

from typing import Iterable

from chatline.domain.presence import sockets as presence_sockets


async def emit_request_received(recipient_id: str, payload: dict) -> None:
	await presence_sockets.notify_user(recipient_id, "friend_request_received", payload)


async def emit_request_cancelled(recipient_id: str, payload: dict) -> None:
	await presence_sockets.notify_user(recipient_id, "friend_request_cancelled", payload)


async def emit_request_accepted(requester_id: str, payload: dict) -> None:
	await presence_sockets.notify_user(requester_id, "friend_request_accepted", payload)


async def emit_request_rejected(requester_id: str, payload: dict) -> None:
	await presence_sockets.notify_user(requester_id, "friend_request_rejected", payload)


async def emit_friend_removed(user_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(user_ids, "friend_removed_sync", payload)
