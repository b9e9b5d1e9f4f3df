"""Pydantic schemas for accounts, auth and user listings."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import User


class RegisterRequest(BaseModel):
	username: str = Field(..., min_length=3, max_length=32)
	email: EmailStr
	password: str = Field(..., min_length=6, max_length=128)


class LoginRequest(BaseModel):
	email: str = Field(..., min_length=1, description="Email address or username")
	password: str = Field(..., min_length=1)


class PasswordForgotRequest(BaseModel):
	email: EmailStr


class PasswordResetRequest(BaseModel):
	token: str = Field(..., min_length=16)
	new_password: str = Field(..., min_length=6, max_length=128)


class UserSummary(BaseModel):
	id: str
	name: str
	email: Optional[str] = None
	profile_picture: Optional[str] = None
	about: Optional[str] = None
	online: bool = False
	last_seen: Optional[datetime] = None
	friendship_status: Optional[str] = None

	@classmethod
	def from_user(cls, user: User, *, friendship_status: Optional[str] = None) -> "UserSummary":
		return cls(
			id=user.id,
			name=user.username,
			email=user.email,
			profile_picture=user.profile_picture,
			about=user.about or None,
			online=user.is_online,
			last_seen=user.last_seen,
			friendship_status=friendship_status,
		)


class LoginResponse(BaseModel):
	message: str = "Logged in successfully"
	token: str
	user: UserSummary


class MessageResponse(BaseModel):
	message: str


class BlockedUsersResponse(BaseModel):
	blocked_users: List[UserSummary]
