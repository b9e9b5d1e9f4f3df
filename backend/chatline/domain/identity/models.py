"""Domain models for accounts and their relationship sets."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _now() -> datetime:
	return datetime.now(timezone.utc)


class Relation(str, Enum):
	"""Relationship sets kept on every account."""

	FRIENDS = "friends"
	SENT_REQUESTS = "sent_requests"
	RECEIVED_REQUESTS = "received_requests"
	DECLINED_REQUESTS = "declined_requests"
	BLOCKED_USERS = "blocked_users"
	BLOCKED_BY = "blocked_by"


# Columns a profile or bookkeeping update may touch.
MUTABLE_FIELDS = frozenset(
	{
		"username",
		"email",
		"about",
		"phone",
		"profile_picture",
		"password_hash",
		"is_online",
		"last_seen",
		"reset_token_hash",
		"reset_expires_at",
	}
)


@dataclass(slots=True)
class User:
	id: str
	username: str
	email: str
	password_hash: str
	profile_picture: Optional[str] = None
	about: str = ""
	phone: Optional[str] = None
	is_online: bool = False
	last_seen: Optional[datetime] = None
	created_at: datetime = field(default_factory=_now)
	friends: list[str] = field(default_factory=list)
	sent_requests: list[str] = field(default_factory=list)
	received_requests: list[str] = field(default_factory=list)
	declined_requests: list[str] = field(default_factory=list)
	blocked_users: list[str] = field(default_factory=list)
	blocked_by: list[str] = field(default_factory=list)
	reset_token_hash: Optional[str] = None
	reset_expires_at: Optional[datetime] = None

	@classmethod
	def from_record(cls, record) -> "User":
		return cls(
			id=str(record["id"]),
			username=record["username"],
			email=record["email"],
			password_hash=record["password_hash"],
			profile_picture=record.get("profile_picture"),
			about=record.get("about") or "",
			phone=record.get("phone"),
			is_online=bool(record.get("is_online")),
			last_seen=record.get("last_seen"),
			created_at=record["created_at"],
			friends=list(record.get("friends") or []),
			sent_requests=list(record.get("sent_requests") or []),
			received_requests=list(record.get("received_requests") or []),
			declined_requests=list(record.get("declined_requests") or []),
			blocked_users=list(record.get("blocked_users") or []),
			blocked_by=list(record.get("blocked_by") or []),
			reset_token_hash=record.get("reset_token_hash"),
			reset_expires_at=record.get("reset_expires_at"),
		)

	def relation(self, relation: Relation) -> list[str]:
		return getattr(self, relation.value)

	def is_friend(self, other_id: str) -> bool:
		return other_id in self.friends

	def has_block_with(self, other_id: str) -> bool:
		"""True when either side has blocked the other."""
		return other_id in self.blocked_users or other_id in self.blocked_by

	def block_set(self) -> set[str]:
		return set(self.blocked_users) | set(self.blocked_by)

	def can_see_statuses_of(self, owner_id: str) -> bool:
		return self.is_friend(owner_id) and not self.has_block_with(owner_id)

	def friendship_status(self, other_id: str) -> str:
		if other_id in self.friends:
			return "friends"
		if other_id in self.sent_requests:
			return "request_sent"
		if other_id in self.received_requests:
			return "request_received"
		if other_id in self.declined_requests:
			return "request_declined"
		if other_id in self.blocked_users:
			return "blocked"
		return "none"
