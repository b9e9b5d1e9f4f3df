"""Domain models for statuses."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

DEFAULT_BACKGROUND = "#000000"
STATUS_ID_REGEX = re.compile(r"^[0-9A-HJKMNP-TV-Z]{26}$")


def is_valid_status_id(value: object) -> bool:
	return isinstance(value, str) and bool(STATUS_ID_REGEX.fullmatch(value.upper()))


class ContentType(str, Enum):
	TEXT = "text"
	IMAGE = "image"
	VIDEO = "video"


@dataclass(slots=True)
class StatusContent:
	type: ContentType
	text: str = ""
	url: str = ""
	background_color: str = DEFAULT_BACKGROUND

	@property
	def has_media(self) -> bool:
		return self.type in (ContentType.IMAGE, ContentType.VIDEO) and bool(self.url)


@dataclass(slots=True)
class StatusViewer:
	user_id: str
	viewed_at: datetime


@dataclass(slots=True)
class Status:
	id: str
	owner_id: str
	content: StatusContent
	expires_at: datetime
	created_at: datetime
	updated_at: datetime
	is_active: bool = True
	viewers: list[StatusViewer] = field(default_factory=list)

	@classmethod
	def from_record(cls, record, viewers: Optional[list[StatusViewer]] = None) -> "Status":
		return cls(
			id=str(record["id"]),
			owner_id=str(record["owner_id"]),
			content=StatusContent(
				type=ContentType(record["content_type"]),
				text=record.get("text") or "",
				url=record.get("url") or "",
				background_color=record.get("background_color") or DEFAULT_BACKGROUND,
			),
			expires_at=record["expires_at"],
			created_at=record["created_at"],
			updated_at=record["updated_at"],
			is_active=bool(record["is_active"]),
			viewers=list(viewers or []),
		)

	@property
	def viewed_by(self) -> list[str]:
		return [viewer.user_id for viewer in self.viewers]

	@property
	def total_views(self) -> int:
		return len(self.viewers)

	def has_viewer(self, user_id: str) -> bool:
		return any(viewer.user_id == user_id for viewer in self.viewers)

	def is_live(self, now: datetime) -> bool:
		return self.is_active and self.expires_at > now
