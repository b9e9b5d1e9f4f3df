"""Domain models for persisted chat messages."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

ATTACHMENT_KINDS = ("images", "documents", "audio", "videos")


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _json(value: Any) -> Any:
	# asyncpg hands jsonb back as text unless a codec is registered.
	if isinstance(value, str):
		return json.loads(value)
	return value


def _parse_ts(value: Any) -> Optional[datetime]:
	if value is None or isinstance(value, datetime):
		return value
	return datetime.fromisoformat(str(value))


@dataclass(slots=True)
class Attachments:
	images: list[str] = field(default_factory=list)
	documents: list[str] = field(default_factory=list)
	audio: list[str] = field(default_factory=list)
	videos: list[str] = field(default_factory=list)

	@classmethod
	def from_dict(cls, data: Optional[dict]) -> "Attachments":
		data = data or {}
		return cls(**{kind: list(data.get(kind) or []) for kind in ATTACHMENT_KINDS})

	def to_dict(self) -> dict[str, list[str]]:
		return asdict(self)

	def is_empty(self) -> bool:
		return not any(getattr(self, kind) for kind in ATTACHMENT_KINDS)


@dataclass(slots=True)
class MessageSnapshot:
	"""Copy of another message taken at reply/forward time; never refreshed."""

	id: str
	body: str
	sender_id: str
	sender_name: str
	attachments: Attachments = field(default_factory=Attachments)

	@classmethod
	def from_dict(cls, data: Optional[dict]) -> Optional["MessageSnapshot"]:
		if not data:
			return None
		return cls(
			id=str(data["id"]),
			body=data.get("body") or "",
			sender_id=str(data["sender_id"]),
			sender_name=data.get("sender_name") or "",
			attachments=Attachments.from_dict(data.get("attachments")),
		)

	def to_dict(self) -> dict[str, Any]:
		return {
			"id": self.id,
			"body": self.body,
			"sender_id": self.sender_id,
			"sender_name": self.sender_name,
			"attachments": self.attachments.to_dict(),
		}


@dataclass(slots=True)
class GroupDelivery:
	user_id: str
	delivered_at: Optional[datetime] = None
	read_at: Optional[datetime] = None

	@classmethod
	def from_dict(cls, data: dict) -> "GroupDelivery":
		return cls(
			user_id=str(data["user_id"]),
			delivered_at=_parse_ts(data.get("delivered_at")),
			read_at=_parse_ts(data.get("read_at")),
		)

	def to_dict(self) -> dict[str, Any]:
		return {
			"user_id": self.user_id,
			"delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
			"read_at": self.read_at.isoformat() if self.read_at else None,
		}

	@property
	def status(self) -> str:
		if self.read_at:
			return "read"
		if self.delivered_at:
			return "delivered"
		return "sent"


@dataclass(slots=True)
class Message:
	id: str
	sender_id: str
	sender_name: str
	body: str = ""
	recipient_id: Optional[str] = None
	group_id: Optional[str] = None
	attachments: Attachments = field(default_factory=Attachments)
	created_at: datetime = field(default_factory=_now)
	delivered_at: Optional[datetime] = None
	read_at: Optional[datetime] = None
	deleted_for_everyone: bool = False
	hidden_for: list[str] = field(default_factory=list)
	reactions: dict[str, list[str]] = field(default_factory=dict)
	group_deliveries: list[GroupDelivery] = field(default_factory=list)
	reply_to: Optional[MessageSnapshot] = None
	forwarded_from: Optional[MessageSnapshot] = None

	@classmethod
	def from_record(cls, record) -> "Message":
		return cls(
			id=str(record["id"]),
			sender_id=str(record["sender_id"]),
			sender_name=record["sender_name"],
			body=record["body"] or "",
			recipient_id=record["recipient_id"],
			group_id=record["group_id"],
			attachments=Attachments.from_dict(_json(record["attachments"])),
			created_at=record["created_at"],
			delivered_at=record["delivered_at"],
			read_at=record["read_at"],
			deleted_for_everyone=bool(record["deleted_for_everyone"]),
			hidden_for=list(record["hidden_for"] or []),
			reactions={k: list(v) for k, v in (_json(record["reactions"]) or {}).items()},
			group_deliveries=[GroupDelivery.from_dict(d) for d in _json(record["group_deliveries"]) or []],
			reply_to=MessageSnapshot.from_dict(_json(record["reply_to"])),
			forwarded_from=MessageSnapshot.from_dict(_json(record["forwarded_from"])),
		)

	@property
	def is_group(self) -> bool:
		return self.group_id is not None

	def snapshot(self) -> MessageSnapshot:
		return MessageSnapshot(
			id=self.id,
			body=self.body,
			sender_id=self.sender_id,
			sender_name=self.sender_name,
			attachments=Attachments.from_dict(self.attachments.to_dict()),
		)

	def delivery_for(self, user_id: str) -> Optional[GroupDelivery]:
		for delivery in self.group_deliveries:
			if delivery.user_id == user_id:
				return delivery
		return None

	def is_hidden_for(self, user_id: str) -> bool:
		return user_id in self.hidden_for

	@property
	def status(self) -> str:
		"""Aggregate receipt state: a group message is read once every recipient has read it."""
		if self.is_group:
			if not self.group_deliveries:
				return "sent"
			if all(d.read_at for d in self.group_deliveries):
				return "read"
			if all(d.delivered_at for d in self.group_deliveries):
				return "delivered"
			return "sent"
		if self.read_at:
			return "read"
		if self.delivered_at:
			return "delivered"
		return "sent"
