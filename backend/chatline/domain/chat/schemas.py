"""Pydantic schemas for the messages API."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .models import GroupDelivery, Message, MessageSnapshot


class MessageAttachments(BaseModel):
	images: List[str] = Field(default_factory=list)
	documents: List[str] = Field(default_factory=list)
	audio: List[str] = Field(default_factory=list)
	videos: List[str] = Field(default_factory=list)


class SnapshotOut(BaseModel):
	id: str
	body: str
	sender_id: str
	sender_name: str
	attachments: MessageAttachments

	@classmethod
	def from_snapshot(cls, snapshot: Optional[MessageSnapshot]) -> Optional["SnapshotOut"]:
		if snapshot is None:
			return None
		return cls(**snapshot.to_dict())


class GroupDeliveryOut(BaseModel):
	user_id: str
	status: str
	delivered_at: Optional[datetime] = None
	read_at: Optional[datetime] = None

	@classmethod
	def from_delivery(cls, delivery: GroupDelivery) -> "GroupDeliveryOut":
		return cls(
			user_id=delivery.user_id,
			status=delivery.status,
			delivered_at=delivery.delivered_at,
			read_at=delivery.read_at,
		)


class SendMessageRequest(BaseModel):
	recipient_id: str = Field(..., min_length=1)
	body: str = Field(default="", max_length=4000)
	attachments: MessageAttachments = Field(default_factory=MessageAttachments)
	reply_to: Optional[str] = None
	forward_of: Optional[str] = None


class SendGroupMessageRequest(BaseModel):
	group_id: str = Field(..., min_length=1)
	body: str = Field(default="", max_length=4000)
	attachments: MessageAttachments = Field(default_factory=MessageAttachments)
	reply_to: Optional[str] = None
	forward_of: Optional[str] = None


class MessageOut(BaseModel):
	id: str
	sender_id: str
	sender_name: str
	recipient_id: Optional[str] = None
	group_id: Optional[str] = None
	body: str
	attachments: MessageAttachments
	created_at: datetime
	status: str
	delivered_at: Optional[datetime] = None
	read_at: Optional[datetime] = None
	deleted_for_everyone: bool = False
	reactions: Dict[str, List[str]] = Field(default_factory=dict)
	reply_to: Optional[SnapshotOut] = None
	forwarded_from: Optional[SnapshotOut] = None

	@classmethod
	def from_model(cls, message: Message) -> "MessageOut":
		return cls(
			id=message.id,
			sender_id=message.sender_id,
			sender_name=message.sender_name,
			recipient_id=message.recipient_id,
			group_id=message.group_id,
			body=message.body,
			attachments=MessageAttachments(**message.attachments.to_dict()),
			created_at=message.created_at,
			status=message.status,
			delivered_at=message.delivered_at,
			read_at=message.read_at,
			deleted_for_everyone=message.deleted_for_everyone,
			reactions={emoji: list(users) for emoji, users in message.reactions.items()},
			reply_to=SnapshotOut.from_snapshot(message.reply_to),
			forwarded_from=SnapshotOut.from_snapshot(message.forwarded_from),
		)


class SoftDeleteRequest(BaseModel):
	for_everyone: bool = False


class ReactionRequest(BaseModel):
	emoji: str = Field(..., min_length=1, max_length=16)


class ReactionResponse(BaseModel):
	message_id: str
	emoji: str
	added: bool
	reactions: Dict[str, List[str]]


class MessageIdsRequest(BaseModel):
	message_ids: List[str] = Field(default_factory=list)


class BulkReadResponse(BaseModel):
	processed_count: int


class MessageStatusOut(BaseModel):
	message_id: str
	status: str
	delivered_at: Optional[datetime] = None
	read_at: Optional[datetime] = None
	members: Optional[List[GroupDeliveryOut]] = None

	@classmethod
	def from_model(cls, message: Message) -> "MessageStatusOut":
		return cls(
			message_id=message.id,
			status=message.status,
			delivered_at=message.delivered_at,
			read_at=message.read_at,
			members=[GroupDeliveryOut.from_delivery(d) for d in message.group_deliveries] if message.is_group else None,
		)


class ClearResponse(BaseModel):
	cleared_count: int
