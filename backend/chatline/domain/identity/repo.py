"""Persistence for accounts, with an in-memory fallback for tests and local dev."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime
from typing import Any, Iterable, List, Optional

import asyncpg
import ulid

from chatline.domain.common.errors import ConflictError
from chatline.infra.postgres import get_pool

from .models import MUTABLE_FIELDS, Relation, User

_USER_COLUMNS = """
	id, username, email, password_hash, profile_picture, about, phone,
	is_online, last_seen, created_at, friends, sent_requests, received_requests,
	declined_requests, blocked_users, blocked_by, reset_token_hash, reset_expires_at
"""


class _InMemoryStore:
	"""Fallback store used in tests when Postgres is unavailable."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._users: dict[str, User] = {}

	def reset(self) -> None:
		self._users.clear()

	def _conflict(self, username: Optional[str], email: Optional[str], exclude_id: Optional[str]) -> Optional[str]:
		for user in self._users.values():
			if user.id == exclude_id:
				continue
			if username and user.username.lower() == username.lower():
				return "username_taken"
			if email and user.email.lower() == email.lower():
				return "email_taken"
		return None

	async def create(self, username: str, email: str, password_hash: str) -> User:
		async with self._lock:
			conflict = self._conflict(username, email, None)
			if conflict:
				raise ConflictError(conflict)
			user = User(id=str(ulid.new()), username=username, email=email, password_hash=password_hash)
			self._users[user.id] = user
			return copy.deepcopy(user)

	async def get(self, user_id: str) -> Optional[User]:
		async with self._lock:
			user = self._users.get(user_id)
			return copy.deepcopy(user) if user else None

	async def get_many(self, user_ids: Iterable[str]) -> List[User]:
		async with self._lock:
			return [copy.deepcopy(self._users[uid]) for uid in user_ids if uid in self._users]

	async def find_by_login(self, identifier: str) -> Optional[User]:
		lowered = identifier.lower()
		async with self._lock:
			for user in self._users.values():
				if user.username.lower() == lowered or user.email.lower() == lowered:
					return copy.deepcopy(user)
			return None

	async def find_by_reset_hash(self, token_hash: str) -> Optional[User]:
		async with self._lock:
			for user in self._users.values():
				if user.reset_token_hash == token_hash:
					return copy.deepcopy(user)
			return None

	async def find_conflict(self, username: Optional[str], email: Optional[str], exclude_id: Optional[str]) -> Optional[str]:
		async with self._lock:
			return self._conflict(username, email, exclude_id)

	async def list_all(self, exclude: set[str]) -> List[User]:
		async with self._lock:
			users = [copy.deepcopy(u) for u in self._users.values() if u.id not in exclude]
		users.sort(key=lambda u: u.username.lower())
		return users

	async def search(self, query: str, exclude: set[str], limit: int) -> List[User]:
		needle = query.lower()
		async with self._lock:
			matches = [
				copy.deepcopy(u)
				for u in self._users.values()
				if u.id not in exclude and (needle in u.username.lower() or needle in u.email.lower())
			]
		matches.sort(key=lambda u: u.username.lower())
		return matches[:limit]

	async def add_relation(self, user_id: str, relation: Relation, other_id: str) -> None:
		async with self._lock:
			user = self._users.get(user_id)
			if user is None:
				return
			values = user.relation(relation)
			if other_id not in values:
				values.append(other_id)

	async def remove_relation(self, user_id: str, relation: Relation, other_id: str) -> None:
		async with self._lock:
			user = self._users.get(user_id)
			if user is None:
				return
			values = user.relation(relation)
			while other_id in values:
				values.remove(other_id)

	async def update_fields(self, user_id: str, fields: dict[str, Any]) -> Optional[User]:
		async with self._lock:
			user = self._users.get(user_id)
			if user is None:
				return None
			conflict = self._conflict(fields.get("username"), fields.get("email"), user_id)
			if conflict:
				raise ConflictError(conflict)
			for key, value in fields.items():
				setattr(user, key, value)
			return copy.deepcopy(user)


_MEMORY_STORE = _InMemoryStore()


def reset_memory_store() -> None:
	_MEMORY_STORE.reset()


class UserRepository:
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

	async def create(self, username: str, email: str, password_hash: str) -> User:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.create(username, email, password_hash)
		async with pool.acquire() as conn:
			try:
				row = await conn.fetchrow(
					f"""
					INSERT INTO users (id, username, email, password_hash)
					VALUES ($1, $2, $3, $4)
					RETURNING {_USER_COLUMNS}
					""",
					str(ulid.new()),
					username,
					email,
					password_hash,
				)
			except asyncpg.UniqueViolationError as exc:
				raise ConflictError("user_exists") from exc
		return User.from_record(row)

	async def get(self, user_id: str) -> Optional[User]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.get(user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1", user_id)
		return User.from_record(row) if row else None

	async def get_many(self, user_ids: Iterable[str]) -> List[User]:
		ids = [uid for uid in dict.fromkeys(user_ids)]
		if not ids:
			return []
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.get_many(ids)
		async with pool.acquire() as conn:
			rows = await conn.fetch(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ANY($1::text[])", ids)
		by_id = {str(row["id"]): User.from_record(row) for row in rows}
		return [by_id[uid] for uid in ids if uid in by_id]

	async def find_by_login(self, identifier: str) -> Optional[User]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.find_by_login(identifier)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				SELECT {_USER_COLUMNS} FROM users
				WHERE lower(username) = lower($1) OR lower(email) = lower($1)
				LIMIT 1
				""",
				identifier,
			)
		return User.from_record(row) if row else None

	async def find_by_reset_hash(self, token_hash: str) -> Optional[User]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.find_by_reset_hash(token_hash)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT {_USER_COLUMNS} FROM users WHERE reset_token_hash = $1", token_hash)
		return User.from_record(row) if row else None

	async def find_conflict(
		self,
		*,
		username: Optional[str] = None,
		email: Optional[str] = None,
		exclude_id: Optional[str] = None,
	) -> Optional[str]:
		"""Return ``username_taken``/``email_taken`` when another account holds the value."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.find_conflict(username, email, exclude_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				SELECT
					bool_or(lower(username) = lower($1)) AS username_taken,
					bool_or(lower(email) = lower($2)) AS email_taken
				FROM users
				WHERE ($3::text IS NULL OR id <> $3)
					AND (lower(username) = lower($1) OR lower(email) = lower($2))
				""",
				username,
				email,
				exclude_id,
			)
		if row and row["username_taken"]:
			return "username_taken"
		if row and row["email_taken"]:
			return "email_taken"
		return None

	async def list_all(self, *, exclude: Iterable[str] = ()) -> List[User]:
		excluded = set(exclude)
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.list_all(excluded)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_USER_COLUMNS} FROM users
				WHERE NOT (id = ANY($1::text[]))
				ORDER BY lower(username)
				""",
				list(excluded),
			)
		return [User.from_record(row) for row in rows]

	async def search(self, query: str, *, exclude: Iterable[str] = (), limit: int = 20) -> List[User]:
		excluded = set(exclude)
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.search(query, excluded, limit)
		pattern = "%" + query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_USER_COLUMNS} FROM users
				WHERE NOT (id = ANY($1::text[]))
					AND (username ILIKE $2 OR email ILIKE $2)
				ORDER BY lower(username)
				LIMIT $3
				""",
				list(excluded),
				pattern,
				limit,
			)
		return [User.from_record(row) for row in rows]

	async def add_relation(self, user_id: str, relation: Relation, other_id: str) -> None:
		pool = await self._pool_or_none()
		if pool is None:
			await _MEMORY_STORE.add_relation(user_id, relation, other_id)
			return
		column = Relation(relation).value
		async with pool.acquire() as conn:
			await conn.execute(
				f"""
				UPDATE users
				SET {column} = array_append(array_remove({column}, $2), $2)
				WHERE id = $1
				""",
				user_id,
				other_id,
			)

	async def remove_relation(self, user_id: str, relation: Relation, other_id: str) -> None:
		pool = await self._pool_or_none()
		if pool is None:
			await _MEMORY_STORE.remove_relation(user_id, relation, other_id)
			return
		column = Relation(relation).value
		async with pool.acquire() as conn:
			await conn.execute(
				f"UPDATE users SET {column} = array_remove({column}, $2) WHERE id = $1",
				user_id,
				other_id,
			)

	async def update_fields(self, user_id: str, fields: dict[str, Any]) -> Optional[User]:
		unknown = set(fields) - MUTABLE_FIELDS
		if unknown:
			raise ValueError(f"immutable user fields: {sorted(unknown)}")
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.update_fields(user_id, fields)
		if not fields:
			return await self.get(user_id)
		assignments = ", ".join(f"{name} = ${idx}" for idx, name in enumerate(fields, start=2))
		async with pool.acquire() as conn:
			try:
				row = await conn.fetchrow(
					f"UPDATE users SET {assignments} WHERE id = $1 RETURNING {_USER_COLUMNS}",
					user_id,
					*fields.values(),
				)
			except asyncpg.UniqueViolationError as exc:
				raise ConflictError("username_or_email_taken") from exc
		return User.from_record(row) if row else None

	async def mark_presence(self, user_id: str, *, online: bool, at: datetime) -> None:
		await self.update_fields(user_id, {"is_online": online, "last_seen": at})


_REPOSITORY = UserRepository()


def get_repository() -> UserRepository:
	return _REPOSITORY
