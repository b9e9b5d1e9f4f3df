"""Group persistence with an in-memory fallback."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, List, Optional

import ulid

from chatline.infra.postgres import get_pool

from .models import Group

_GROUP_COLUMNS = "id, name, description, creator_id, members, picture, created_at, updated_at"
_UPDATABLE = frozenset({"name", "description", "picture"})


def _now() -> datetime:
	return datetime.now(timezone.utc)


class _InMemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._groups: dict[str, Group] = {}

	def reset(self) -> None:
		self._groups.clear()

	async def create(self, name: str, description: str, creator_id: str, members: list[str]) -> Group:
		async with self._lock:
			group = Group(
				id=str(ulid.new()),
				name=name,
				description=description,
				creator_id=creator_id,
				members=list(members),
			)
			self._groups[group.id] = group
			return copy.deepcopy(group)

	async def get(self, group_id: str) -> Optional[Group]:
		async with self._lock:
			group = self._groups.get(group_id)
			return copy.deepcopy(group) if group else None

	async def list_all(self) -> List[Group]:
		async with self._lock:
			groups = [copy.deepcopy(g) for g in self._groups.values()]
		groups.sort(key=lambda g: g.created_at, reverse=True)
		return groups

	async def list_for_member(self, user_id: str) -> List[Group]:
		async with self._lock:
			groups = [copy.deepcopy(g) for g in self._groups.values() if g.is_member(user_id)]
		groups.sort(key=lambda g: g.created_at, reverse=True)
		return groups

	async def add_member(self, group_id: str, user_id: str) -> Optional[Group]:
		async with self._lock:
			group = self._groups.get(group_id)
			if group is None:
				return None
			if user_id not in group.members:
				group.members.append(user_id)
			group.updated_at = _now()
			return copy.deepcopy(group)

	async def remove_member(self, group_id: str, user_id: str) -> Optional[Group]:
		async with self._lock:
			group = self._groups.get(group_id)
			if group is None:
				return None
			group.members = [m for m in group.members if m != user_id]
			group.updated_at = _now()
			return copy.deepcopy(group)

	async def update(self, group_id: str, fields: dict[str, Any]) -> Optional[Group]:
		async with self._lock:
			group = self._groups.get(group_id)
			if group is None:
				return None
			for key, value in fields.items():
				setattr(group, key, value)
			group.updated_at = _now()
			return copy.deepcopy(group)


_MEMORY_STORE = _InMemoryStore()


def reset_memory_store() -> None:
	_MEMORY_STORE.reset()


class GroupRepository:
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

	async def create(self, name: str, description: str, creator_id: str, members: list[str]) -> Group:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.create(name, description, creator_id, members)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				INSERT INTO chat_groups (id, name, description, creator_id, members)
				VALUES ($1, $2, $3, $4, $5::text[])
				RETURNING {_GROUP_COLUMNS}
				""",
				str(ulid.new()),
				name,
				description,
				creator_id,
				members,
			)
		return Group.from_record(row)

	async def get(self, group_id: str) -> Optional[Group]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.get(group_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT {_GROUP_COLUMNS} FROM chat_groups WHERE id = $1", group_id)
		return Group.from_record(row) if row else None

	async def list_all(self) -> List[Group]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.list_all()
		async with pool.acquire() as conn:
			rows = await conn.fetch(f"SELECT {_GROUP_COLUMNS} FROM chat_groups ORDER BY created_at DESC")
		return [Group.from_record(row) for row in rows]

	async def list_for_member(self, user_id: str) -> List[Group]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.list_for_member(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_GROUP_COLUMNS} FROM chat_groups
				WHERE creator_id = $1 OR $1 = ANY(members)
				ORDER BY created_at DESC
				""",
				user_id,
			)
		return [Group.from_record(row) for row in rows]

	async def add_member(self, group_id: str, user_id: str) -> Optional[Group]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.add_member(group_id, user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				UPDATE chat_groups
				SET members = array_append(array_remove(members, $2), $2), updated_at = NOW()
				WHERE id = $1
				RETURNING {_GROUP_COLUMNS}
				""",
				group_id,
				user_id,
			)
		return Group.from_record(row) if row else None

	async def remove_member(self, group_id: str, user_id: str) -> Optional[Group]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.remove_member(group_id, user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				UPDATE chat_groups
				SET members = array_remove(members, $2), updated_at = NOW()
				WHERE id = $1
				RETURNING {_GROUP_COLUMNS}
				""",
				group_id,
				user_id,
			)
		return Group.from_record(row) if row else None

	async def update(self, group_id: str, fields: dict[str, Any]) -> Optional[Group]:
		unknown = set(fields) - _UPDATABLE
		if unknown:
			raise ValueError(f"immutable group fields: {sorted(unknown)}")
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.update(group_id, fields)
		if not fields:
			return await self.get(group_id)
		assignments = ", ".join(f"{name} = ${idx}" for idx, name in enumerate(fields, start=2))
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"UPDATE chat_groups SET {assignments}, updated_at = NOW() WHERE id = $1 RETURNING {_GROUP_COLUMNS}",
				group_id,
				*fields.values(),
			)
		return Group.from_record(row) if row else None


_REPOSITORY = GroupRepository()


def get_repository() -> GroupRepository:
	return _REPOSITORY
