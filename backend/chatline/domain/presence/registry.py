"""Registry of live connections and the users they identified as."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


def _now() -> datetime:
	return datetime.now(timezone.utc)


@dataclass(slots=True)
class Session:
	connection_id: str
	user_id: str
	name: str
	identified_at: datetime = field(default_factory=_now)

	def to_payload(self) -> dict[str, str]:
		return {"id": self.user_id, "name": self.name}


class SessionRegistry:
	"""Maps connections to users and each user to their newest connection.

	A second ``identify`` for the same user supersedes the earlier connection in
	the user index without closing it. ``drop`` only clears the user index when
	it still points at the dropped connection, so a superseded connection going
	away never takes the newer one offline.
	"""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._sessions: dict[str, Session] = {}
		self._by_user: dict[str, str] = {}

	async def identify(self, connection_id: str, user_id: str, name: str) -> Optional[str]:
		"""Register ``connection_id`` for ``user_id``; return the superseded connection, if any."""
		async with self._lock:
			previous_session = self._sessions.get(connection_id)
			if previous_session and previous_session.user_id != user_id:
				if self._by_user.get(previous_session.user_id) == connection_id:
					del self._by_user[previous_session.user_id]
			self._sessions[connection_id] = Session(connection_id=connection_id, user_id=user_id, name=name)
			superseded = self._by_user.get(user_id)
			self._by_user[user_id] = connection_id
			if superseded == connection_id:
				return None
			return superseded

	async def drop(self, connection_id: str) -> Optional[Session]:
		async with self._lock:
			session = self._sessions.pop(connection_id, None)
			if session is None:
				return None
			if self._by_user.get(session.user_id) == connection_id:
				del self._by_user[session.user_id]
			return session

	async def lookup(self, user_id: str) -> Optional[str]:
		async with self._lock:
			return self._by_user.get(user_id)

	async def session_for(self, connection_id: str) -> Optional[Session]:
		async with self._lock:
			return self._sessions.get(connection_id)

	async def online_users(self) -> List[dict[str, str]]:
		async with self._lock:
			return [self._sessions[cid].to_payload() for cid in self._by_user.values() if cid in self._sessions]

	async def count(self) -> int:
		async with self._lock:
			return len(self._by_user)

	async def clear(self) -> None:
		async with self._lock:
			self._sessions.clear()
			self._by_user.clear()


_REGISTRY = SessionRegistry()


def get_registry() -> SessionRegistry:
	return _REGISTRY
