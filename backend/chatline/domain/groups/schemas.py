"""Pydantic schemas for groups."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class GroupCreateRequest(BaseModel):
	name: str = Field(..., min_length=1, max_length=80)
	description: str = Field(default="", max_length=500)
	members: List[str] = Field(default_factory=list)


class GroupUpdateRequest(BaseModel):
	name: Optional[str] = Field(default=None, min_length=1, max_length=80)
	description: Optional[str] = Field(default=None, max_length=500)


class GroupMemberRequest(BaseModel):
	user_id: str = Field(..., min_length=1)


class GroupMember(BaseModel):
	id: str
	name: str
	profile_picture: Optional[str] = None


class GroupResponse(BaseModel):
	id: str
	name: str
	description: str
	creator: GroupMember
	members: List[GroupMember]
	picture: Optional[str] = None
	created_at: datetime
	updated_at: datetime


class GroupRemovalResponse(BaseModel):
	message: str
	group: GroupResponse
