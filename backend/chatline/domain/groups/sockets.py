"""Real-time notifications for group changes."""

from __future__ import annotations

from typing import Iterable

from chatline.domain.presence import sockets as presence_sockets


async def emit_group_created(member_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(member_ids, "group_created", payload)


async def emit_group_updated(member_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(member_ids, "group_updated", payload)


async def emit_member_added(member_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(member_ids, "group_member_added", payload)


async def emit_member_removed(member_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(member_ids, "group_member_removed", payload)


async def emit_picture_updated(member_ids: Iterable[str], payload: dict) -> None:
	await presence_sockets.notify_users(member_ids, "group_profile_picture_updated", payload)


async def join_members(member_ids: Iterable[str], group_id: str) -> None:
	await presence_sockets.join_group_room(member_ids, group_id)


async def leave_member(user_id: str, group_id: str) -> None:
	await presence_sockets.leave_group_room(user_id, group_id)
