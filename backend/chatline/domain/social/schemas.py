"""Pydantic schemas for friend requests and listings."""

from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel

from chatline.domain.identity.schemas import UserSummary

FriendshipStatus = Literal["friends", "request_sent", "request_received", "request_declined", "blocked", "none"]


class FriendRequestsResponse(BaseModel):
	received: List[UserSummary]
	sent: List[UserSummary]


class FriendshipStatusResponse(BaseModel):
	user_id: str
	status: FriendshipStatus


class FriendActionResponse(BaseModel):
	message: str
	user: UserSummary | None = None
