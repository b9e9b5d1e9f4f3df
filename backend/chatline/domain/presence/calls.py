"""In-memory tracking of active group voice/video calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional


def _now() -> datetime:
	return datetime.now(timezone.utc)


def clean_member_ids(members: Any) -> List[str]:
	"""Accept ids or ``{"id"|"_id": ...}`` objects; drop anything else."""
	if not isinstance(members, list):
		return []
	cleaned: list[str] = []
	for member in members:
		if isinstance(member, dict):
			member = member.get("id") or member.get("_id")
		if isinstance(member, (str, int)) and str(member).strip():
			cleaned.append(str(member).strip())
	return cleaned


@dataclass(slots=True)
class GroupCall:
	group_id: str
	initiator: str
	call_type: str
	participants: set[str] = field(default_factory=set)
	started_at: datetime = field(default_factory=_now)


class GroupCallRegistry:
	"""Active calls keyed by group; a call disappears once its last participant leaves."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._calls: dict[str, GroupCall] = {}

	async def start(self, group_id: str, initiator: str, call_type: str) -> GroupCall:
		async with self._lock:
			call = self._calls.get(group_id)
			if call is None:
				call = GroupCall(group_id=group_id, initiator=initiator, call_type=call_type, participants={initiator})
				self._calls[group_id] = call
			return call

	async def join(self, group_id: str, user_id: str) -> Optional[GroupCall]:
		async with self._lock:
			call = self._calls.get(group_id)
			if call is not None:
				call.participants.add(user_id)
			return call

	async def leave(self, group_id: str, user_id: str) -> Optional[GroupCall]:
		"""Remove ``user_id``; returns the call, which is discarded when it became empty."""
		async with self._lock:
			call = self._calls.get(group_id)
			if call is None:
				return None
			call.participants.discard(user_id)
			if not call.participants:
				del self._calls[group_id]
			return call

	async def end(self, group_id: str) -> Optional[GroupCall]:
		async with self._lock:
			return self._calls.pop(group_id, None)

	async def calls_for(self, user_id: str) -> List[str]:
		async with self._lock:
			return [gid for gid, call in self._calls.items() if user_id in call.participants]

	async def get(self, group_id: str) -> Optional[GroupCall]:
		async with self._lock:
			return self._calls.get(group_id)

	async def clear(self) -> None:
		async with self._lock:
			self._calls.clear()


_CALLS = GroupCallRegistry()


def get_call_registry() -> GroupCallRegistry:
	return _CALLS
