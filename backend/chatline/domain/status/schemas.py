"""Pydantic schemas for status (story) requests and responses."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .models import DEFAULT_BACKGROUND


class StatusContentIn(BaseModel):
	type: Literal["text", "image", "video"] = "text"
	text: str = Field(default="", max_length=700)
	url: str = ""
	background_color: str = Field(default=DEFAULT_BACKGROUND, pattern=r"^#[0-9A-Fa-f]{6}$")


class StatusContentOut(BaseModel):
	type: str
	text: str = ""
	url: str = ""
	background_color: str = DEFAULT_BACKGROUND


class StatusViewerOut(BaseModel):
	user_id: str
	name: Optional[str] = None
	profile_picture: Optional[str] = None
	viewed_at: datetime


class StatusOut(BaseModel):
	id: str
	user_id: str
	owner_name: Optional[str] = None
	content: StatusContentOut
	viewed_by: List[str] = Field(default_factory=list)
	viewers: List[StatusViewerOut] = Field(default_factory=list)
	total_views: int = 0
	is_active: bool = True
	expires_at: datetime
	created_at: datetime
	updated_at: datetime


class StatusDetail(StatusOut):
	has_user_viewed: bool = False
	is_expired: bool = False


class StatusGroup(BaseModel):
	user_id: str
	user_name: str
	profile_picture: Optional[str] = None
	statuses: List[StatusOut]
	has_unviewed: bool
	last_status_time: datetime


class FeedResponse(BaseModel):
	status_groups: List[StatusGroup]
	my_statuses: List[StatusOut]


class ViewResponse(BaseModel):
	success: bool = True
	message: str
	was_new_view: bool
	total_views: int
	status_owner_id: str
	status: Optional[StatusOut] = None


class BulkViewRequest(BaseModel):
	status_ids: Optional[List[str]] = None


class BulkViewResponse(BaseModel):
	success: bool = True
	processed_count: int
	total_requested: int
	updated_statuses: List[StatusOut]


class MyStatusesResponse(BaseModel):
	success: bool = True
	statuses: List[StatusOut]
	count: int


class StatusAuthor(BaseModel):
	id: str
	name: str
	profile_picture: Optional[str] = None
	online: bool = False


class DeleteResponse(BaseModel):
	success: bool = True
	message: str = "Status deleted successfully"
