"""Chat message workflows: sending, history, deletion, reactions and receipts."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from chatline.domain.common.errors import ForbiddenError, NotFoundError, ValidationError
from chatline.domain.groups.models import Group
from chatline.domain.groups.repo import GroupRepository, get_repository as get_group_repository
from chatline.domain.identity.models import User
from chatline.domain.identity.repo import UserRepository, get_repository as get_user_repository
from chatline.domain.identity.schemas import UserSummary
from chatline.domain.media import Upload, get_store
from chatline.infra.auth import AuthenticatedUser
from chatline.obs import metrics as obs_metrics

from . import sockets
from .models import Attachments, GroupDelivery, Message, MessageSnapshot
from .repo import MessageRepository, get_repository
from .schemas import (
	BulkReadResponse,
	ClearResponse,
	MessageOut,
	MessageStatusOut,
	ReactionResponse,
	SendGroupMessageRequest,
	SendMessageRequest,
)

logger = logging.getLogger(__name__)

# Upload kind -> (media policy, response key)
UPLOAD_KINDS = {
	"image": ("image", "image_urls"),
	"document": ("document", "document_urls"),
	"audio": ("audio", "audio_urls"),
	"video": ("video", "video_urls"),
}


def _now() -> datetime:
	return datetime.now(timezone.utc)


class ChatService:
	def __init__(
		self,
		repository: Optional[MessageRepository] = None,
		users: Optional[UserRepository] = None,
		groups: Optional[GroupRepository] = None,
	) -> None:
		self._repo = repository or get_repository()
		self._users = users or get_user_repository()
		self._groups = groups or get_group_repository()

	# ------------------------------------------------------------------
	# Lookups

	async def _require_user(self, user_id: str) -> User:
		user = await self._users.get(user_id)
		if user is None:
			raise NotFoundError("user_not_found")
		return user

	async def _require_member(self, group_id: str, user_id: str) -> Group:
		group = await self._groups.get(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		if not group.is_member(user_id):
			raise ForbiddenError("not_member")
		return group

	async def _can_access(self, message: Message, user_id: str) -> bool:
		if message.is_group:
			group = await self._groups.get(message.group_id)
			return group is not None and group.is_member(user_id)
		return user_id in (message.sender_id, message.recipient_id)

	async def _require_message(self, message_id: str, user_id: str) -> Message:
		message = await self._repo.get(message_id)
		if message is None:
			raise NotFoundError("message_not_found")
		if not await self._can_access(message, user_id):
			raise ForbiddenError("not_participant")
		return message

	async def _audience(self, message: Message) -> list[str]:
		"""Everyone who can see ``message``."""
		if message.is_group:
			group = await self._groups.get(message.group_id)
			return list(group.members) if group else [message.sender_id]
		return [message.sender_id, message.recipient_id]

	async def _snapshot(self, message_id: Optional[str], user_id: str) -> Optional[MessageSnapshot]:
		if not message_id:
			return None
		source = await self._require_message(message_id, user_id)
		if source.deleted_for_everyone:
			raise ValidationError("message_deleted")
		return source.snapshot()

	@staticmethod
	def _require_content(body: str, attachments: Attachments, forwarded: Optional[MessageSnapshot]) -> None:
		if not body.strip() and attachments.is_empty() and forwarded is None:
			raise ValidationError("empty_message")

	# ------------------------------------------------------------------
	# Sending and history

	async def send_direct(self, auth_user: AuthenticatedUser, payload: SendMessageRequest) -> MessageOut:
		if payload.recipient_id == auth_user.id:
			raise ValidationError("self_message")
		sender = await self._require_user(auth_user.id)
		recipient = await self._require_user(payload.recipient_id)
		if sender.has_block_with(recipient.id):
			raise ForbiddenError("blocked")
		attachments = Attachments.from_dict(payload.attachments.model_dump())
		reply_to = await self._snapshot(payload.reply_to, sender.id)
		forwarded = await self._snapshot(payload.forward_of, sender.id)
		self._require_content(payload.body, attachments, forwarded)
		message = await self._repo.create(
			Message(
				id="",
				sender_id=sender.id,
				sender_name=sender.username,
				recipient_id=recipient.id,
				body=payload.body,
				attachments=attachments,
				created_at=_now(),
				reply_to=reply_to,
				forwarded_from=forwarded,
			)
		)
		obs_metrics.inc_message_sent("direct")
		out = MessageOut.from_model(message)
		await sockets.emit_direct_message(recipient.id, out.model_dump(mode="json"))
		return out

	async def send_group(self, auth_user: AuthenticatedUser, payload: SendGroupMessageRequest) -> MessageOut:
		group = await self._require_member(payload.group_id, auth_user.id)
		sender = await self._require_user(auth_user.id)
		attachments = Attachments.from_dict(payload.attachments.model_dump())
		reply_to = await self._snapshot(payload.reply_to, sender.id)
		forwarded = await self._snapshot(payload.forward_of, sender.id)
		self._require_content(payload.body, attachments, forwarded)
		recipients = group.other_members(sender.id)
		message = await self._repo.create(
			Message(
				id="",
				sender_id=sender.id,
				sender_name=sender.username,
				group_id=group.id,
				body=payload.body,
				attachments=attachments,
				created_at=_now(),
				group_deliveries=[GroupDelivery(user_id=uid) for uid in recipients],
				reply_to=reply_to,
				forwarded_from=forwarded,
			)
		)
		obs_metrics.inc_message_sent("group")
		out = MessageOut.from_model(message)
		await sockets.emit_group_message(recipients, out.model_dump(mode="json"))
		return out

	async def list_direct(self, auth_user: AuthenticatedUser, peer_id: str) -> List[MessageOut]:
		await self._require_user(peer_id)
		messages = await self._repo.list_direct(auth_user.id, peer_id, viewer_id=auth_user.id)
		return [MessageOut.from_model(m) for m in messages]

	async def list_group(self, auth_user: AuthenticatedUser, group_id: str) -> List[MessageOut]:
		await self._require_member(group_id, auth_user.id)
		messages = await self._repo.list_group(group_id, viewer_id=auth_user.id)
		return [MessageOut.from_model(m) for m in messages]

	# ------------------------------------------------------------------
	# Deletion

	async def delete_message(self, auth_user: AuthenticatedUser, message_id: str) -> None:
		message = await self._require_message(message_id, auth_user.id)
		if message.sender_id != auth_user.id:
			raise ForbiddenError("not_sender")
		audience = await self._audience(message)
		if not await self._repo.delete(message.id):
			raise NotFoundError("message_not_found")
		await sockets.emit_message_deleted(
			[uid for uid in audience if uid != auth_user.id],
			{"message_id": message.id, "group_id": message.group_id, "for_everyone": True},
		)

	async def soft_delete(self, auth_user: AuthenticatedUser, message_id: str, *, for_everyone: bool) -> MessageOut:
		message = await self._require_message(message_id, auth_user.id)
		if for_everyone:
			if message.sender_id != auth_user.id:
				raise ForbiddenError("not_sender")
			message.body = ""
			message.attachments = Attachments()
			message.deleted_for_everyone = True
		elif not message.is_hidden_for(auth_user.id):
			message.hidden_for.append(auth_user.id)
		saved = await self._repo.save(message)
		if saved is None:
			raise NotFoundError("message_not_found")
		if for_everyone:
			audience = await self._audience(saved)
			await sockets.emit_message_deleted(
				[uid for uid in audience if uid != auth_user.id],
				{"message_id": saved.id, "group_id": saved.group_id, "for_everyone": True},
			)
		return MessageOut.from_model(saved)

	async def clear_direct(self, auth_user: AuthenticatedUser, peer_id: str) -> ClearResponse:
		count = await self._repo.hide_direct(auth_user.id, peer_id, viewer_id=auth_user.id)
		return ClearResponse(cleared_count=count)

	async def clear_group(self, auth_user: AuthenticatedUser, group_id: str) -> ClearResponse:
		await self._require_member(group_id, auth_user.id)
		count = await self._repo.hide_group(group_id, viewer_id=auth_user.id)
		return ClearResponse(cleared_count=count)

	# ------------------------------------------------------------------
	# Reactions

	async def toggle_reaction(self, auth_user: AuthenticatedUser, message_id: str, emoji: str) -> ReactionResponse:
		emoji = emoji.strip()
		if not emoji:
			raise ValidationError("emoji_required")
		message = await self._require_message(message_id, auth_user.id)
		users = message.reactions.setdefault(emoji, [])
		added = auth_user.id not in users
		if added:
			users.append(auth_user.id)
		else:
			users.remove(auth_user.id)
			if not users:
				del message.reactions[emoji]
		saved = await self._repo.save(message)
		if saved is None:
			raise NotFoundError("message_not_found")
		response = ReactionResponse(message_id=saved.id, emoji=emoji, added=added, reactions=saved.reactions)
		await sockets.emit_reaction_updated(
			await self._audience(saved),
			{**response.model_dump(mode="json"), "user_id": auth_user.id},
		)
		return response

	async def list_reactions(self, auth_user: AuthenticatedUser, message_id: str) -> Dict[str, List[UserSummary]]:
		message = await self._require_message(message_id, auth_user.id)
		ids = {uid for users in message.reactions.values() for uid in users}
		users = {u.id: u for u in await self._users.get_many(sorted(ids))}
		return {
			emoji: [UserSummary.from_user(users[uid]) for uid in reactors if uid in users]
			for emoji, reactors in message.reactions.items()
		}

	async def reaction_details(self, auth_user: AuthenticatedUser, message_id: str, emoji: str) -> List[UserSummary]:
		message = await self._require_message(message_id, auth_user.id)
		reactors = message.reactions.get(emoji, [])
		return [UserSummary.from_user(u) for u in await self._users.get_many(reactors)]

	# ------------------------------------------------------------------
	# Receipts

	def _apply_receipt(self, message: Message, user_id: str, status: str, at: datetime) -> bool:
		"""Set the caller's delivered/read stamp once; returns True when something changed."""
		if message.is_group:
			target = message.delivery_for(user_id)
			if target is None:
				raise ForbiddenError("not_recipient")
		else:
			if message.recipient_id != user_id:
				raise ForbiddenError("not_recipient")
			target = message
		changed = False
		if target.delivered_at is None:
			target.delivered_at = at
			changed = True
		if status == "read" and target.read_at is None:
			target.read_at = at
			changed = True
		return changed

	async def _mark(self, auth_user: AuthenticatedUser, message_id: str, status: str) -> MessageStatusOut:
		message = await self._require_message(message_id, auth_user.id)
		if self._apply_receipt(message, auth_user.id, status, _now()):
			saved = await self._repo.save(message)
			if saved is None:
				raise NotFoundError("message_not_found")
			message = saved
			obs_metrics.inc_message_receipt(status)
			await sockets.emit_status_updated(
				message.sender_id,
				{"message_id": message.id, "status": status, "user_id": auth_user.id},
			)
		return MessageStatusOut.from_model(message)

	async def mark_delivered(self, auth_user: AuthenticatedUser, message_id: str) -> MessageStatusOut:
		return await self._mark(auth_user, message_id, "delivered")

	async def mark_read(self, auth_user: AuthenticatedUser, message_id: str) -> MessageStatusOut:
		return await self._mark(auth_user, message_id, "read")

	async def mark_read_bulk(self, auth_user: AuthenticatedUser, message_ids: Sequence[str]) -> BulkReadResponse:
		if not message_ids:
			raise ValidationError("message_ids_required")
		processed = 0
		now = _now()
		for message in await self._repo.get_many(message_ids):
			if not await self._can_access(message, auth_user.id):
				continue
			try:
				changed = self._apply_receipt(message, auth_user.id, "read", now)
			except ForbiddenError:
				continue
			if not changed or await self._repo.save(message) is None:
				continue
			processed += 1
			obs_metrics.inc_message_receipt("read")
			await sockets.emit_status_updated(
				message.sender_id,
				{"message_id": message.id, "status": "read", "user_id": auth_user.id},
			)
		return BulkReadResponse(processed_count=processed)

	async def message_status(self, auth_user: AuthenticatedUser, message_id: str) -> MessageStatusOut:
		return MessageStatusOut.from_model(await self._require_message(message_id, auth_user.id))

	async def batch_status(self, auth_user: AuthenticatedUser, message_ids: Sequence[str]) -> Dict[str, MessageStatusOut]:
		result: Dict[str, MessageStatusOut] = {}
		for message in await self._repo.get_many(message_ids):
			if await self._can_access(message, auth_user.id):
				result[message.id] = MessageStatusOut.from_model(message)
		return result

	# ------------------------------------------------------------------
	# Attachments

	async def upload_attachments(self, auth_user: AuthenticatedUser, kind: str, files: Sequence[Upload]) -> Dict[str, List[str]]:
		if kind not in UPLOAD_KINDS:
			raise ValidationError("invalid_kind")
		uploads = [f for f in files if f.size > 0]
		if not uploads:
			raise ValidationError("no_files")
		policy, key = UPLOAD_KINDS[kind]
		store = get_store()
		urls = []
		for upload in uploads:
			stored = await store.store(upload, policy=policy, owner_id=auth_user.id)
			urls.append(stored.url)
		logger.info("chat attachments stored user_id=%s kind=%s count=%d", auth_user.id, kind, len(urls))
		return {key: urls}


_SERVICE = ChatService()


def get_service() -> ChatService:
	return _SERVICE


async def send_direct(auth_user: AuthenticatedUser, payload: SendMessageRequest) -> MessageOut:
	return await _SERVICE.send_direct(auth_user, payload)


async def send_group(auth_user: AuthenticatedUser, payload: SendGroupMessageRequest) -> MessageOut:
	return await _SERVICE.send_group(auth_user, payload)


async def list_direct(auth_user: AuthenticatedUser, peer_id: str) -> List[MessageOut]:
	return await _SERVICE.list_direct(auth_user, peer_id)


async def list_group(auth_user: AuthenticatedUser, group_id: str) -> List[MessageOut]:
	return await _SERVICE.list_group(auth_user, group_id)


async def delete_message(auth_user: AuthenticatedUser, message_id: str) -> None:
	await _SERVICE.delete_message(auth_user, message_id)


async def soft_delete(auth_user: AuthenticatedUser, message_id: str, *, for_everyone: bool) -> MessageOut:
	return await _SERVICE.soft_delete(auth_user, message_id, for_everyone=for_everyone)


async def clear_direct(auth_user: AuthenticatedUser, peer_id: str) -> ClearResponse:
	return await _SERVICE.clear_direct(auth_user, peer_id)


async def clear_group(auth_user: AuthenticatedUser, group_id: str) -> ClearResponse:
	return await _SERVICE.clear_group(auth_user, group_id)


async def toggle_reaction(auth_user: AuthenticatedUser, message_id: str, emoji: str) -> ReactionResponse:
	return await _SERVICE.toggle_reaction(auth_user, message_id, emoji)


async def list_reactions(auth_user: AuthenticatedUser, message_id: str) -> Dict[str, List[UserSummary]]:
	return await _SERVICE.list_reactions(auth_user, message_id)


async def reaction_details(auth_user: AuthenticatedUser, message_id: str, emoji: str) -> List[UserSummary]:
	return await _SERVICE.reaction_details(auth_user, message_id, emoji)


async def mark_delivered(auth_user: AuthenticatedUser, message_id: str) -> MessageStatusOut:
	return await _SERVICE.mark_delivered(auth_user, message_id)


async def mark_read(auth_user: AuthenticatedUser, message_id: str) -> MessageStatusOut:
	return await _SERVICE.mark_read(auth_user, message_id)


async def mark_read_bulk(auth_user: AuthenticatedUser, message_ids: Sequence[str]) -> BulkReadResponse:
	return await _SERVICE.mark_read_bulk(auth_user, message_ids)


async def message_status(auth_user: AuthenticatedUser, message_id: str) -> MessageStatusOut:
	return await _SERVICE.message_status(auth_user, message_id)


async def batch_status(auth_user: AuthenticatedUser, message_ids: Sequence[str]) -> Dict[str, MessageStatusOut]:
	return await _SERVICE.batch_status(auth_user, message_ids)


async def upload_attachments(auth_user: AuthenticatedUser, kind: str, files: Sequence[Upload]) -> Dict[str, List[str]]:
	return await _SERVICE.upload_attachments(auth_user, kind, files)
