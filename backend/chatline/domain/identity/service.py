"""Account registration, login, blocking and password recovery."""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import urlencode

from chatline.domain.common.errors import ConflictError, NotFoundError, ValidationError
from chatline.domain.status import sockets as status_sockets
from chatline.infra import jwt as jwt_helper
from chatline.infra.auth import AuthenticatedUser
from chatline.infra.password import check_needs_rehash, hash_password, verify_password
from chatline.obs import metrics as obs_metrics
from chatline.settings import settings

from . import mailer, policy
from .models import Relation, User
from .repo import UserRepository, get_repository
from .schemas import LoginRequest, LoginResponse, RegisterRequest, UserSummary

logger = logging.getLogger(__name__)


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _hash_token(token: str) -> str:
	return hashlib.sha256(token.encode("utf-8")).hexdigest()


class InvalidCredentials(ValidationError):
	def __init__(self) -> None:
		super().__init__("invalid_credentials")


class IdentityService:
	def __init__(self, repository: Optional[UserRepository] = None) -> None:
		self._repo = repository or get_repository()

	async def require_user(self, user_id: str) -> User:
		user = await self._repo.get(user_id)
		if user is None:
			raise NotFoundError("user_not_found")
		return user

	async def register(self, payload: RegisterRequest) -> UserSummary:
		username = policy.normalise_username(payload.username)
		email = policy.normalise_email(str(payload.email))
		policy.guard_username(username)
		policy.guard_password(payload.password)
		if await self._repo.find_conflict(username=username, email=email):
			raise ConflictError("user_exists")
		try:
			user = await self._repo.create(username, email, hash_password(payload.password))
		except ConflictError:
			raise ConflictError("user_exists") from None
		obs_metrics.inc_identity_register()
		logger.info("user registered user_id=%s", user.id)
		return UserSummary.from_user(user)

	async def login(self, payload: LoginRequest) -> LoginResponse:
		user = await self._repo.find_by_login(payload.email.strip())
		if user is None or not verify_password(user.password_hash, payload.password):
			obs_metrics.inc_identity_login("invalid")
			raise InvalidCredentials()
		if check_needs_rehash(user.password_hash):
			await self._repo.update_fields(user.id, {"password_hash": hash_password(payload.password)})
		token = jwt_helper.encode_access({"sub": user.id, "id": user.id, "username": user.username})
		obs_metrics.inc_identity_login("ok")
		return LoginResponse(token=token, user=UserSummary.from_user(user))

	async def list_users(self, auth_user: AuthenticatedUser) -> List[UserSummary]:
		viewer = await self.require_user(auth_user.id)
		users = await self._repo.list_all(exclude={viewer.id, *viewer.block_set()})
		return [UserSummary.from_user(u, friendship_status=viewer.friendship_status(u.id)) for u in users]

	async def block(self, auth_user: AuthenticatedUser, target_id: str) -> None:
		if target_id == auth_user.id:
			raise ValidationError("self_block")
		user = await self.require_user(auth_user.id)
		await self.require_user(target_id)
		if target_id in user.blocked_users:
			raise ConflictError("already_blocked")
		# Blocking tears down the friendship and any pending request either way.
		for left, right in ((user.id, target_id), (target_id, user.id)):
			await self._repo.remove_relation(left, Relation.FRIENDS, right)
			await self._repo.remove_relation(left, Relation.SENT_REQUESTS, right)
			await self._repo.remove_relation(left, Relation.RECEIVED_REQUESTS, right)
			await self._repo.remove_relation(left, Relation.DECLINED_REQUESTS, right)
		await self._repo.add_relation(user.id, Relation.BLOCKED_USERS, target_id)
		await self._repo.add_relation(target_id, Relation.BLOCKED_BY, user.id)
		obs_metrics.inc_block("block")
		await status_sockets.emit_feed_refresh([user.id, target_id], {"reason": "user_blocked"})

	async def unblock(self, auth_user: AuthenticatedUser, target_id: str) -> None:
		user = await self.require_user(auth_user.id)
		if target_id not in user.blocked_users:
			raise NotFoundError("not_blocked")
		await self._repo.remove_relation(user.id, Relation.BLOCKED_USERS, target_id)
		await self._repo.remove_relation(target_id, Relation.BLOCKED_BY, user.id)
		obs_metrics.inc_block("unblock")
		await status_sockets.emit_feed_refresh([user.id, target_id], {"reason": "user_unblocked"})

	async def blocked_users(self, auth_user: AuthenticatedUser) -> List[UserSummary]:
		user = await self.require_user(auth_user.id)
		blocked = await self._repo.get_many(user.blocked_users)
		return [UserSummary.from_user(u, friendship_status="blocked") for u in blocked]

	async def request_password_reset(self, email: str) -> None:
		"""Issue a reset link when the address is known; silent otherwise."""
		normalised = policy.normalise_email(email)
		await policy.enforce_pwreset_request_rate(normalised)
		user = await self._repo.find_by_login(normalised)
		if user is None or user.email.lower() != normalised:
			obs_metrics.inc_identity_pwreset("request", "unknown")
			return
		token = secrets.token_urlsafe(48)
		await self._repo.update_fields(
			user.id,
			{
				"reset_token_hash": _hash_token(token),
				"reset_expires_at": _now() + timedelta(minutes=settings.password_reset_ttl_minutes),
			},
		)
		link = f"{settings.password_reset_url}?{urlencode({'token': token})}"
		sent = await mailer.send_password_reset(user.email, link)
		obs_metrics.inc_identity_pwreset("request", "sent" if sent else "mail_failed")

	async def reset_password(self, token: str, new_password: str) -> None:
		policy.guard_password(new_password)
		user = await self._repo.find_by_reset_hash(_hash_token(token))
		if user is None or user.reset_expires_at is None or user.reset_expires_at <= _now():
			obs_metrics.inc_identity_pwreset("consume", "invalid")
			raise ValidationError("invalid_token")
		await self._repo.update_fields(
			user.id,
			{
				"password_hash": hash_password(new_password),
				"reset_token_hash": None,
				"reset_expires_at": None,
			},
		)
		obs_metrics.inc_identity_pwreset("consume", "ok")
		logger.info("password reset user_id=%s", user.id)


_SERVICE = IdentityService()


def get_service() -> IdentityService:
	return _SERVICE


async def require_user(user_id: str) -> User:
	return await _SERVICE.require_user(user_id)


async def register(payload: RegisterRequest) -> UserSummary:
	return await _SERVICE.register(payload)


async def login(payload: LoginRequest) -> LoginResponse:
	return await _SERVICE.login(payload)


async def list_users(auth_user: AuthenticatedUser) -> List[UserSummary]:
	return await _SERVICE.list_users(auth_user)


async def block(auth_user: AuthenticatedUser, target_id: str) -> None:
	await _SERVICE.block(auth_user, target_id)


async def unblock(auth_user: AuthenticatedUser, target_id: str) -> None:
	await _SERVICE.unblock(auth_user, target_id)


async def blocked_users(auth_user: AuthenticatedUser) -> List[UserSummary]:
	return await _SERVICE.blocked_users(auth_user)


async def request_password_reset(email: str) -> None:
	await _SERVICE.request_password_reset(email)


async def reset_password(token: str, new_password: str) -> None:
	await _SERVICE.reset_password(token, new_password)
