"""Real-time notifications for chat messages."""

from __future__ import annotations

from typing import Iterable

from chatline.domain.presence import sockets as presence_sockets


async def emit_direct_message(recipient_id: str, payload: dict) -> None:
	await presence_sockets.notify_user(recipient_id, "received-message", payload)


async def emit_group_message(member_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(member_ids, "received-group-message", payload)


async def emit_message_deleted(user_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(user_ids, "message_deleted", payload)


async def emit_reaction_updated(user_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(user_ids, "message_reaction_updated", payload)


async def emit_status_updated(sender_id: str, payload: dict) -> None:
	await presence_sockets.notify_user(sender_id, "message_status_updated", payload)
