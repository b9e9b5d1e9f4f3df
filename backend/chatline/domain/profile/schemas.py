"""Pydantic schemas for profile reads and partial updates."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class ProfileUpdate(BaseModel):
	"""Partial update: every field is optional and ``None`` leaves it unchanged."""

	username: Optional[str] = Field(default=None, min_length=3, max_length=32)
	email: Optional[EmailStr] = None
	about: Optional[str] = Field(default=None, max_length=280)
	phone: Optional[str] = Field(default=None, max_length=24)


class ProfileOut(BaseModel):
	id: str
	username: str
	email: Optional[str] = None
	profile_picture: Optional[str] = None
	about: str = ""
	phone: Optional[str] = None
	online: bool = False
	last_seen: Optional[datetime] = None
	created_at: datetime
	friends_count: int = 0
