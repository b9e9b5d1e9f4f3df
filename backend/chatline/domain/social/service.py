"""Friend request lifecycle, friendship listings and user search."""

from __future__ import annotations

import logging
from typing import List, Optional

from chatline.domain.common.errors import ConflictError, ForbiddenError, NotFoundError, QuotaExceeded, ValidationError
from chatline.domain.identity.models import Relation, User
from chatline.domain.identity.repo import UserRepository, get_repository
from chatline.domain.identity.schemas import UserSummary
from chatline.domain.status import sockets as status_sockets
from chatline.infra import rate_limit
from chatline.infra.auth import AuthenticatedUser
from chatline.obs import metrics as obs_metrics
from chatline.settings import settings

from . import sockets
from .schemas import FriendRequestsResponse, FriendshipStatusResponse

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 20


class SocialService:
	def __init__(self, repository: Optional[UserRepository] = None) -> None:
		self._repo = repository or get_repository()

	async def _require(self, user_id: str) -> User:
		user = await self._repo.get(user_id)
		if user is None:
			raise NotFoundError("user_not_found")
		return user

	async def _clear_declined(self, a: str, b: str) -> None:
		await self._repo.remove_relation(a, Relation.DECLINED_REQUESTS, b)
		await self._repo.remove_relation(b, Relation.DECLINED_REQUESTS, a)

	async def send_request(self, auth_user: AuthenticatedUser, target_id: str) -> UserSummary:
		if target_id == auth_user.id:
			raise ValidationError("self_request")
		sender = await self._require(auth_user.id)
		target = await self._require(target_id)
		if sender.is_friend(target.id):
			raise ConflictError("already_friends")
		if target.id in sender.sent_requests:
			raise ConflictError("already_sent")
		if target.id in sender.received_requests:
			raise ConflictError("reverse_pending")
		if sender.has_block_with(target.id):
			raise ForbiddenError("blocked")
		allowed = await rate_limit.allow(
			"friend_request",
			sender.id,
			limit=settings.friend_requests_per_minute,
			window_seconds=60,
		)
		if not allowed:
			raise QuotaExceeded("friend_request_rate")

		await self._clear_declined(sender.id, target.id)
		await self._repo.add_relation(sender.id, Relation.SENT_REQUESTS, target.id)
		await self._repo.add_relation(target.id, Relation.RECEIVED_REQUESTS, sender.id)
		obs_metrics.inc_friend_request("sent")
		await sockets.emit_request_received(
			target.id,
			{
				"recipient_id": target.id,
				"sender_id": sender.id,
				"sender_name": sender.username,
				"sender_profile_picture": sender.profile_picture,
			},
		)
		return UserSummary.from_user(target, friendship_status="request_sent")

	async def cancel_request(self, auth_user: AuthenticatedUser, target_id: str) -> str:
		"""Withdraw a pending request, or forget a declined one."""
		sender = await self._require(auth_user.id)
		if target_id in sender.sent_requests:
			await self._repo.remove_relation(sender.id, Relation.SENT_REQUESTS, target_id)
			await self._repo.remove_relation(target_id, Relation.RECEIVED_REQUESTS, sender.id)
			obs_metrics.inc_friend_request("cancelled")
			await sockets.emit_request_cancelled(
				target_id,
				{"recipient_id": target_id, "sender_id": sender.id, "sender_name": sender.username},
			)
			return "Friend request cancelled"
		if target_id in sender.declined_requests:
			await self._clear_declined(sender.id, target_id)
			return "Declined request cleared"
		raise NotFoundError("no_request")

	async def accept_request(self, auth_user: AuthenticatedUser, requester_id: str) -> UserSummary:
		user = await self._require(auth_user.id)
		if requester_id not in user.received_requests:
			raise NotFoundError("no_request")
		requester = await self._require(requester_id)
		await self._repo.remove_relation(user.id, Relation.RECEIVED_REQUESTS, requester.id)
		await self._repo.remove_relation(requester.id, Relation.SENT_REQUESTS, user.id)
		await self._clear_declined(user.id, requester.id)
		await self._repo.add_relation(user.id, Relation.FRIENDS, requester.id)
		await self._repo.add_relation(requester.id, Relation.FRIENDS, user.id)
		obs_metrics.inc_friend_request("accepted")
		await sockets.emit_request_accepted(
			requester.id,
			{
				"accepter_id": user.id,
				"accepter_name": user.username,
				"accepter_profile_picture": user.profile_picture,
			},
		)
		await status_sockets.emit_feed_refresh(
			[user.id],
			{"reason": "friend_accepted", "friend_id": requester.id, "friend_name": requester.username},
		)
		await status_sockets.emit_feed_refresh(
			[requester.id],
			{"reason": "friend_accepted", "friend_id": user.id, "friend_name": user.username},
		)
		return UserSummary.from_user(requester, friendship_status="friends")

	async def reject_request(self, auth_user: AuthenticatedUser, requester_id: str) -> None:
		user = await self._require(auth_user.id)
		if requester_id not in user.received_requests:
			raise NotFoundError("no_request")
		await self._repo.remove_relation(user.id, Relation.RECEIVED_REQUESTS, requester_id)
		await self._repo.remove_relation(requester_id, Relation.SENT_REQUESTS, user.id)
		await self._repo.add_relation(requester_id, Relation.DECLINED_REQUESTS, user.id)
		obs_metrics.inc_friend_request("rejected")
		await sockets.emit_request_rejected(
			requester_id,
			{"rejecter_id": user.id, "rejecter_name": user.username},
		)

	async def list_requests(self, auth_user: AuthenticatedUser) -> FriendRequestsResponse:
		user = await self._require(auth_user.id)
		received = await self._repo.get_many(user.received_requests)
		sent = await self._repo.get_many(user.sent_requests)
		return FriendRequestsResponse(
			received=[UserSummary.from_user(u, friendship_status="request_received") for u in received],
			sent=[UserSummary.from_user(u, friendship_status="request_sent") for u in sent],
		)

	async def list_friends(self, auth_user: AuthenticatedUser) -> List[UserSummary]:
		user = await self._require(auth_user.id)
		friends = await self._repo.get_many(user.friends)
		return [UserSummary.from_user(u, friendship_status="friends") for u in friends]

	async def remove_friend(self, auth_user: AuthenticatedUser, friend_id: str) -> None:
		user = await self._require(auth_user.id)
		if not user.is_friend(friend_id):
			raise NotFoundError("not_friends")
		await self._repo.remove_relation(user.id, Relation.FRIENDS, friend_id)
		await self._repo.remove_relation(friend_id, Relation.FRIENDS, user.id)
		obs_metrics.inc_friend_request("removed")
		await sockets.emit_friend_removed(
			[user.id, friend_id],
			{"user_id": user.id, "friend_id": friend_id},
		)
		await status_sockets.emit_feed_refresh([user.id, friend_id], {"reason": "friend_removed"})

	async def search(self, auth_user: AuthenticatedUser, query: str) -> List[UserSummary]:
		needle = (query or "").strip()
		if not needle:
			return []
		user = await self._require(auth_user.id)
		matches = await self._repo.search(needle, exclude={user.id, *user.block_set()}, limit=SEARCH_LIMIT)
		# Stable sort keeps name order within each bucket.
		matches.sort(key=lambda u: not user.is_friend(u.id))
		return [UserSummary.from_user(u, friendship_status=user.friendship_status(u.id)) for u in matches]

	async def friendship_status(self, auth_user: AuthenticatedUser, target_id: str) -> FriendshipStatusResponse:
		user = await self._require(auth_user.id)
		return FriendshipStatusResponse(user_id=target_id, status=user.friendship_status(target_id))


_SERVICE = SocialService()


def get_service() -> SocialService:
	return _SERVICE


async def send_request(auth_user: AuthenticatedUser, target_id: str) -> UserSummary:
	return await _SERVICE.send_request(auth_user, target_id)


async def cancel_request(auth_user: AuthenticatedUser, target_id: str) -> str:
	return await _SERVICE.cancel_request(auth_user, target_id)


async def accept_request(auth_user: AuthenticatedUser, requester_id: str) -> UserSummary:
	return await _SERVICE.accept_request(auth_user, requester_id)


async def reject_request(auth_user: AuthenticatedUser, requester_id: str) -> None:
	await _SERVICE.reject_request(auth_user, requester_id)


async def list_requests(auth_user: AuthenticatedUser) -> FriendRequestsResponse:
	return await _SERVICE.list_requests(auth_user)


async def list_friends(auth_user: AuthenticatedUser) -> List[UserSummary]:
	return await _SERVICE.list_friends(auth_user)


async def remove_friend(auth_user: AuthenticatedUser, friend_id: str) -> None:
	await _SERVICE.remove_friend(auth_user, friend_id)


async def search(auth_user: AuthenticatedUser, query: str) -> List[UserSummary]:
	return await _SERVICE.search(auth_user, query)


async def friendship_status(auth_user: AuthenticatedUser, target_id: str) -> FriendshipStatusResponse:
	return await _SERVICE.friendship_status(auth_user, target_id)
