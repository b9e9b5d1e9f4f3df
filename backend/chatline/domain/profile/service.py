"""Profile edits and avatar management."""

from __future__ import annotations

from typing import Any, Optional

from chatline.domain.common.errors import ConflictError, NotFoundError, ValidationError
from chatline.domain.identity import policy
from chatline.domain.identity.models import User
from chatline.domain.identity.repo import UserRepository, get_repository
from chatline.domain.media import Upload, get_store, release
from chatline.domain.presence import sockets as presence_sockets
from chatline.infra.auth import AuthenticatedUser
from chatline.obs import metrics as obs_metrics

from .schemas import ProfileOut, ProfileUpdate


def _to_profile(user: User, *, private: bool) -> ProfileOut:
	return ProfileOut(
		id=user.id,
		username=user.username,
		email=user.email if private else None,
		profile_picture=user.profile_picture,
		about=user.about,
		phone=user.phone if private else None,
		online=user.is_online,
		last_seen=user.last_seen,
		created_at=user.created_at,
		friends_count=len(user.friends),
	)


class ProfileService:
	def __init__(self, repository: Optional[UserRepository] = None) -> None:
		self._repo = repository or get_repository()

	async def _require(self, user_id: str) -> User:
		user = await self._repo.get(user_id)
		if user is None:
			raise NotFoundError("user_not_found")
		return user

	async def _friends_of(self, user: User) -> list[str]:
		blocked = user.block_set()
		return [fid for fid in user.friends if fid not in blocked]

	async def get_profile(self, auth_user: AuthenticatedUser) -> ProfileOut:
		return _to_profile(await self._require(auth_user.id), private=True)

	async def get_user_profile(self, user_id: str) -> ProfileOut:
		return _to_profile(await self._require(user_id), private=False)

	async def update_profile(self, auth_user: AuthenticatedUser, payload: ProfileUpdate) -> ProfileOut:
		user = await self._require(auth_user.id)
		fields: dict[str, Any] = {}
		if payload.username is not None:
			username = policy.normalise_username(payload.username)
			policy.guard_username(username)
			fields["username"] = username
		if payload.email is not None:
			fields["email"] = policy.normalise_email(str(payload.email))
		if payload.about is not None:
			about = payload.about.strip()
			policy.guard_about(about)
			fields["about"] = about
		if payload.phone is not None:
			phone = payload.phone.strip()
			if phone:
				policy.guard_phone(phone)
			fields["phone"] = phone or None
		if not fields:
			raise ValidationError("no_fields")

		conflict = await self._repo.find_conflict(
			username=fields.get("username"),
			email=fields.get("email"),
			exclude_id=user.id,
		)
		if conflict:
			raise ConflictError(conflict)
		updated = await self._repo.update_fields(user.id, fields)
		if updated is None:
			raise NotFoundError("user_not_found")
		for name in fields:
			obs_metrics.inc_profile_update(name)
		await presence_sockets.notify_users(
			await self._friends_of(updated),
			"user_profile_updated",
			{
				"user_id": updated.id,
				"username": updated.username,
				"about": updated.about,
				"profile_picture": updated.profile_picture,
			},
		)
		return _to_profile(updated, private=True)

	async def upload_picture(self, auth_user: AuthenticatedUser, upload: Upload) -> ProfileOut:
		user = await self._require(auth_user.id)
		stored = await get_store().store(upload, policy="avatar", owner_id=user.id)
		return await self._replace_picture(user, stored.url)

	async def remove_picture(self, auth_user: AuthenticatedUser) -> ProfileOut:
		user = await self._require(auth_user.id)
		if not user.profile_picture:
			raise NotFoundError("no_picture")
		return await self._replace_picture(user, None)

	async def _replace_picture(self, user: User, url: Optional[str]) -> ProfileOut:
		updated = await self._repo.update_fields(user.id, {"profile_picture": url})
		if updated is None:
			raise NotFoundError("user_not_found")
		await release(user.profile_picture, source="avatar")
		obs_metrics.inc_profile_update("profile_picture")
		await presence_sockets.notify_users(
			await self._friends_of(updated),
			"profile_picture_updated",
			{"user_id": updated.id, "profile_picture": url},
		)
		return _to_profile(updated, private=True)


_SERVICE = ProfileService()


def get_service() -> ProfileService:
	return _SERVICE


async def get_profile(auth_user: AuthenticatedUser) -> ProfileOut:
	return await _SERVICE.get_profile(auth_user)


async def get_user_profile(user_id: str) -> ProfileOut:
	return await _SERVICE.get_user_profile(user_id)


async def update_profile(auth_user: AuthenticatedUser, payload: ProfileUpdate) -> ProfileOut:
	return await _SERVICE.update_profile(auth_user, payload)


async def upload_picture(auth_user: AuthenticatedUser, upload: Upload) -> ProfileOut:
	return await _SERVICE.upload_picture(auth_user, upload)


async def remove_picture(auth_user: AuthenticatedUser) -> ProfileOut:
	return await _SERVICE.remove_picture(auth_user)
