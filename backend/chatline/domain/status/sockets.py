"""Real-time notifications for status changes."""

from __future__ import annotations

from typing import Iterable

from chatline.domain.presence import sockets as presence_sockets


async def emit_status_uploaded(owner_id: str, friend_ids: Iterable[str], payload: dict) -> None:
	# Owner first so the uploader's own tray updates before fan-out.
	await presence_sockets.notify_user(owner_id, "status_uploaded", payload)
	await presence_sockets.notify_users(
		[fid for fid in friend_ids if fid != owner_id],
		"status_uploaded",
		payload,
	)


async def emit_status_viewed(owner_id: str, payload: dict) -> None:
	await presence_sockets.notify_user(owner_id, "status_viewed", payload)


async def emit_status_deleted(friend_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(friend_ids, "status_deleted", payload)


async def emit_feed_refresh(user_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(user_ids, "status_feed_refresh", payload)
