"""Domain models for groups."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _now() -> datetime:
	return datetime.now(timezone.utc)


@dataclass(slots=True)
class Group:
	id: str
	name: str
	creator_id: str
	members: list[str]
	description: str = ""
	picture: Optional[str] = None
	created_at: datetime = field(default_factory=_now)
	updated_at: datetime = field(default_factory=_now)

	@classmethod
	def from_record(cls, record) -> "Group":
		return cls(
			id=str(record["id"]),
			name=record["name"],
			creator_id=str(record["creator_id"]),
			members=list(record.get("members") or []),
			description=record.get("description") or "",
			picture=record.get("picture"),
			created_at=record["created_at"],
			updated_at=record["updated_at"],
		)

	def is_member(self, user_id: str) -> bool:
		return user_id == self.creator_id or user_id in self.members

	def is_admin(self, user_id: str) -> bool:
		return user_id == self.creator_id

	def other_members(self, user_id: str) -> list[str]:
		return [member for member in self.members if member != user_id]
