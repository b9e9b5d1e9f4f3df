"""Status persistence with an in-memory fallback.

Every read that serves a feed takes ``now`` and filters on ``expires_at > now``
itself; physical removal of expired rows is left to the retention job.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime
from typing import Iterable, List, Optional

import ulid

from chatline.infra.postgres import get_pool

from .models import Status, StatusContent, StatusViewer

_STATUS_COLUMNS = """
	id, owner_id, content_type, text, url, background_color, is_active,
	expires_at, created_at, updated_at
"""


class _InMemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._statuses: dict[str, Status] = {}

	def reset(self) -> None:
		self._statuses.clear()

	async def create(self, owner_id: str, content: StatusContent, created_at: datetime, expires_at: datetime) -> Status:
		async with self._lock:
			status = Status(
				id=str(ulid.new()),
				owner_id=owner_id,
				content=copy.deepcopy(content),
				expires_at=expires_at,
				created_at=created_at,
				updated_at=created_at,
			)
			self._statuses[status.id] = status
			return copy.deepcopy(status)

	async def get(self, status_id: str) -> Optional[Status]:
		async with self._lock:
			status = self._statuses.get(status_id)
			return copy.deepcopy(status) if status else None

	async def get_many_live(self, status_ids: list[str], now: datetime) -> List[Status]:
		async with self._lock:
			found = [self._statuses.get(sid) for sid in status_ids]
			return [copy.deepcopy(s) for s in found if s is not None and s.is_live(now)]

	async def list_live_for_owners(self, owner_ids: set[str], now: datetime) -> List[Status]:
		async with self._lock:
			statuses = [copy.deepcopy(s) for s in self._statuses.values() if s.owner_id in owner_ids and s.is_live(now)]
		statuses.sort(key=lambda s: (s.created_at, s.id), reverse=True)
		return statuses

	async def add_view(self, status_id: str, user_id: str, viewed_at: datetime) -> bool:
		async with self._lock:
			status = self._statuses.get(status_id)
			if status is None or status.has_viewer(user_id):
				return False
			status.viewers.append(StatusViewer(user_id=user_id, viewed_at=viewed_at))
			status.updated_at = viewed_at
			return True

	async def delete(self, status_id: str) -> bool:
		async with self._lock:
			return self._statuses.pop(status_id, None) is not None

	async def purge_expired(self, now: datetime, limit: int) -> int:
		async with self._lock:
			doomed = [sid for sid, s in self._statuses.items() if s.expires_at <= now][:limit]
			for sid in doomed:
				del self._statuses[sid]
			return len(doomed)


_MEMORY_STORE = _InMemoryStore()


def reset_memory_store() -> None:
	_MEMORY_STORE.reset()


class StatusRepository:
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

	@staticmethod
	async def _attach_viewers(conn, rows) -> List[Status]:
		if not rows:
			return []
		ids = [str(row["id"]) for row in rows]
		view_rows = await conn.fetch(
			"""
			SELECT status_id, user_id, viewed_at
			FROM status_views
			WHERE status_id = ANY($1::text[])
			ORDER BY viewed_at ASC, user_id ASC
			""",
			ids,
		)
		viewers: dict[str, list[StatusViewer]] = {}
		for view in view_rows:
			viewers.setdefault(str(view["status_id"]), []).append(
				StatusViewer(user_id=str(view["user_id"]), viewed_at=view["viewed_at"])
			)
		return [Status.from_record(row, viewers.get(str(row["id"]))) for row in rows]

	async def create(self, owner_id: str, content: StatusContent, created_at: datetime, expires_at: datetime) -> Status:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.create(owner_id, content, created_at, expires_at)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				INSERT INTO statuses (id, owner_id, content_type, text, url, background_color, expires_at, created_at, updated_at)
				VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $8)
				RETURNING {_STATUS_COLUMNS}
				""",
				str(ulid.new()),
				owner_id,
				content.type.value,
				content.text,
				content.url,
				content.background_color,
				expires_at,
				created_at,
			)
		return Status.from_record(row)

	async def get(self, status_id: str) -> Optional[Status]:
		"""Fetch regardless of expiry; callers decide whether an expired row is usable."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.get(status_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT {_STATUS_COLUMNS} FROM statuses WHERE id = $1", status_id)
			statuses = await self._attach_viewers(conn, [row] if row else [])
		return statuses[0] if statuses else None

	async def get_live(self, status_id: str, now: datetime) -> Optional[Status]:
		statuses = await self.get_many_live([status_id], now)
		return statuses[0] if statuses else None

	async def get_many_live(self, status_ids: Iterable[str], now: datetime) -> List[Status]:
		ids = list(dict.fromkeys(status_ids))
		if not ids:
			return []
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.get_many_live(ids, now)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_STATUS_COLUMNS} FROM statuses
				WHERE id = ANY($1::text[]) AND is_active AND expires_at > $2
				""",
				ids,
				now,
			)
			statuses = await self._attach_viewers(conn, rows)
		order = {sid: idx for idx, sid in enumerate(ids)}
		statuses.sort(key=lambda s: order.get(s.id, len(order)))
		return statuses

	async def list_live_for_owners(self, owner_ids: Iterable[str], now: datetime) -> List[Status]:
		owners = set(owner_ids)
		if not owners:
			return []
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.list_live_for_owners(owners, now)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_STATUS_COLUMNS} FROM statuses
				WHERE owner_id = ANY($1::text[]) AND is_active AND expires_at > $2
				ORDER BY created_at DESC, id DESC
				""",
				list(owners),
				now,
			)
			return await self._attach_viewers(conn, rows)

	async def add_view(self, status_id: str, user_id: str, viewed_at: datetime) -> bool:
		"""Record a view once; returns False when the viewer was already recorded."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.add_view(status_id, user_id, viewed_at)
		async with pool.acquire() as conn:
			async with conn.transaction():
				inserted = await conn.fetchval(
					"""
					INSERT INTO status_views (status_id, user_id, viewed_at)
					VALUES ($1, $2, $3)
					ON CONFLICT (status_id, user_id) DO NOTHING
					RETURNING 1
					""",
					status_id,
					user_id,
					viewed_at,
				)
				if inserted:
					await conn.execute("UPDATE statuses SET updated_at = $2 WHERE id = $1", status_id, viewed_at)
		return bool(inserted)

	async def delete(self, status_id: str) -> bool:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.delete(status_id)
		async with pool.acquire() as conn:
			deleted = await conn.fetchval("DELETE FROM statuses WHERE id = $1 RETURNING 1", status_id)
		return bool(deleted)

	async def purge_expired(self, now: datetime, *, limit: int = 500) -> int:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.purge_expired(now, limit)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				WITH doomed AS (
					SELECT id FROM statuses
					WHERE expires_at <= $1
					ORDER BY expires_at
					LIMIT $2
				)
				DELETE FROM statuses s
				USING doomed
				WHERE s.id = doomed.id
				RETURNING 1
				""",
				now,
				limit,
			)
		return len(rows)


_REPOSITORY = StatusRepository()


def get_repository() -> StatusRepository:
	return _REPOSITORY
