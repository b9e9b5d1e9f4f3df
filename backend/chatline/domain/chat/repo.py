"""Message persistence with an in-memory fallback."""

from __future__ import annotations

import asyncio
import copy
import json
from typing import Iterable, List, Optional

import ulid

from chatline.infra.postgres import get_pool

from .models import Message

_MESSAGE_COLUMNS = """
	id, sender_id, sender_name, recipient_id, group_id, body, attachments,
	created_at, delivered_at, read_at, deleted_for_everyone, hidden_for,
	reactions, group_deliveries, reply_to, forwarded_from
"""


def _in_direct(message: Message, a: str, b: str) -> bool:
	return not message.is_group and {message.sender_id, message.recipient_id} == {a, b}


class _InMemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._messages: dict[str, Message] = {}

	def reset(self) -> None:
		self._messages.clear()

	async def create(self, message: Message) -> Message:
		async with self._lock:
			stored = copy.deepcopy(message)
			stored.id = str(ulid.new())
			self._messages[stored.id] = stored
			return copy.deepcopy(stored)

	async def get(self, message_id: str) -> Optional[Message]:
		async with self._lock:
			message = self._messages.get(message_id)
			return copy.deepcopy(message) if message else None

	async def get_many(self, message_ids: list[str]) -> List[Message]:
		async with self._lock:
			return [copy.deepcopy(self._messages[mid]) for mid in message_ids if mid in self._messages]

	async def list_direct(self, a: str, b: str, viewer_id: str) -> List[Message]:
		async with self._lock:
			found = [
				copy.deepcopy(m)
				for m in self._messages.values()
				if _in_direct(m, a, b) and not m.is_hidden_for(viewer_id)
			]
		found.sort(key=lambda m: (m.created_at, m.id))
		return found

	async def list_group(self, group_id: str, viewer_id: str) -> List[Message]:
		async with self._lock:
			found = [
				copy.deepcopy(m)
				for m in self._messages.values()
				if m.group_id == group_id and not m.is_hidden_for(viewer_id)
			]
		found.sort(key=lambda m: (m.created_at, m.id))
		return found

	async def save(self, message: Message) -> Optional[Message]:
		async with self._lock:
			if message.id not in self._messages:
				return None
			self._messages[message.id] = copy.deepcopy(message)
			return copy.deepcopy(message)

	async def delete(self, message_id: str) -> bool:
		async with self._lock:
			return self._messages.pop(message_id, None) is not None

	async def hide_direct(self, a: str, b: str, viewer_id: str) -> int:
		async with self._lock:
			count = 0
			for message in self._messages.values():
				if _in_direct(message, a, b) and not message.is_hidden_for(viewer_id):
					message.hidden_for.append(viewer_id)
					count += 1
			return count

	async def hide_group(self, group_id: str, viewer_id: str) -> int:
		async with self._lock:
			count = 0
			for message in self._messages.values():
				if message.group_id == group_id and not message.is_hidden_for(viewer_id):
					message.hidden_for.append(viewer_id)
					count += 1
			return count


_MEMORY_STORE = _InMemoryStore()


def reset_memory_store() -> None:
	_MEMORY_STORE.reset()


def _jsonb_params(message: Message) -> tuple:
	return (
		json.dumps(message.attachments.to_dict()),
		json.dumps(message.reactions),
		json.dumps([d.to_dict() for d in message.group_deliveries]),
		json.dumps(message.reply_to.to_dict()) if message.reply_to else None,
		json.dumps(message.forwarded_from.to_dict()) if message.forwarded_from else None,
	)


class MessageRepository:
	"""Repository backed by asyncpg with an in-memory fallback."""

	def __init__(self) -> None:
		self._pool_checked = False
		self._pool = None

	async def _pool_or_none(self):
		if self._pool_checked:
			return self._pool
		self._pool_checked = True
		try:
			pool = await get_pool()
		except Exception:
			pool = None
		self._pool = pool
		return pool

	async def create(self, message: Message) -> Message:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.create(message)
		attachments, reactions, deliveries, reply_to, forwarded_from = _jsonb_params(message)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				INSERT INTO messages (
					id, sender_id, sender_name, recipient_id, group_id, body, attachments,
					created_at, reactions, group_deliveries, reply_to, forwarded_from
				)
				VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9::jsonb, $10::jsonb, $11::jsonb, $12::jsonb)
				RETURNING {_MESSAGE_COLUMNS}
				""",
				str(ulid.new()),
				message.sender_id,
				message.sender_name,
				message.recipient_id,
				message.group_id,
				message.body,
				attachments,
				message.created_at,
				reactions,
				deliveries,
				reply_to,
				forwarded_from,
			)
		return Message.from_record(row)

	async def get(self, message_id: str) -> Optional[Message]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.get(message_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = $1", message_id)
		return Message.from_record(row) if row else None

	async def get_many(self, message_ids: Iterable[str]) -> List[Message]:
		ids = list(dict.fromkeys(message_ids))
		if not ids:
			return []
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.get_many(ids)
		async with pool.acquire() as conn:
			rows = await conn.fetch(f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ANY($1::text[])", ids)
		by_id = {str(row["id"]): Message.from_record(row) for row in rows}
		return [by_id[mid] for mid in ids if mid in by_id]

	async def list_direct(self, a: str, b: str, *, viewer_id: str) -> List[Message]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.list_direct(a, b, viewer_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_MESSAGE_COLUMNS} FROM messages
				WHERE group_id IS NULL
					AND ((sender_id = $1 AND recipient_id = $2) OR (sender_id = $2 AND recipient_id = $1))
					AND NOT ($3 = ANY(hidden_for))
				ORDER BY created_at ASC, id ASC
				""",
				a,
				b,
				viewer_id,
			)
		return [Message.from_record(row) for row in rows]

	async def list_group(self, group_id: str, *, viewer_id: str) -> List[Message]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.list_group(group_id, viewer_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_MESSAGE_COLUMNS} FROM messages
				WHERE group_id = $1 AND NOT ($2 = ANY(hidden_for))
				ORDER BY created_at ASC, id ASC
				""",
				group_id,
				viewer_id,
			)
		return [Message.from_record(row) for row in rows]

	async def save(self, message: Message) -> Optional[Message]:
		"""Persist the mutable parts of a message: body, flags, receipts and reactions."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.save(message)
		attachments, reactions, deliveries, _, _ = _jsonb_params(message)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				UPDATE messages SET
					body = $2,
					attachments = $3::jsonb,
					delivered_at = $4,
					read_at = $5,
					deleted_for_everyone = $6,
					hidden_for = $7::text[],
					reactions = $8::jsonb,
					group_deliveries = $9::jsonb
				WHERE id = $1
				RETURNING {_MESSAGE_COLUMNS}
				""",
				message.id,
				message.body,
				attachments,
				message.delivered_at,
				message.read_at,
				message.deleted_for_everyone,
				list(message.hidden_for),
				reactions,
				deliveries,
			)
		return Message.from_record(row) if row else None

	async def delete(self, message_id: str) -> bool:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.delete(message_id)
		async with pool.acquire() as conn:
			deleted = await conn.fetchval("DELETE FROM messages WHERE id = $1 RETURNING 1", message_id)
		return bool(deleted)

	async def hide_direct(self, a: str, b: str, *, viewer_id: str) -> int:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.hide_direct(a, b, viewer_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				UPDATE messages SET hidden_for = array_append(hidden_for, $3)
				WHERE group_id IS NULL
					AND ((sender_id = $1 AND recipient_id = $2) OR (sender_id = $2 AND recipient_id = $1))
					AND NOT ($3 = ANY(hidden_for))
				RETURNING 1
				""",
				a,
				b,
				viewer_id,
			)
		return len(rows)

	async def hide_group(self, group_id: str, *, viewer_id: str) -> int:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.hide_group(group_id, viewer_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				UPDATE messages SET hidden_for = array_append(hidden_for, $2)
				WHERE group_id = $1 AND NOT ($2 = ANY(hidden_for))
				RETURNING 1
				""",
				group_id,
				viewer_id,
			)
		return len(rows)


_REPOSITORY = MessageRepository()


def get_repository() -> MessageRepository:
	return _REPOSITORY
