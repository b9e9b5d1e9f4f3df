"""Ephemeral status (story) workflows: upload, feed, views and deletion."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from chatline.domain.common.errors import ForbiddenError, NotFoundError, QuotaExceeded, ValidationError
from chatline.domain.identity.models import User
from chatline.domain.identity.repo import UserRepository, get_repository as get_user_repository
from chatline.domain.media import Upload, get_store, release
from chatline.infra import rate_limit
from chatline.infra.auth import AuthenticatedUser
from chatline.obs import metrics as obs_metrics
from chatline.settings import settings

from . import sockets
from .models import ContentType, Status, StatusContent, is_valid_status_id
from .repo import StatusRepository, get_repository
from .schemas import (
	BulkViewResponse,
	FeedResponse,
	MyStatusesResponse,
	StatusAuthor,
	StatusContentIn,
	StatusContentOut,
	StatusDetail,
	StatusGroup,
	StatusOut,
	StatusViewerOut,
	ViewResponse,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _parse_content(content: Any) -> StatusContentIn:
	if isinstance(content, str):
		try:
			content = json.loads(content)
		except json.JSONDecodeError:
			raise ValidationError("invalid_content") from None
	if not isinstance(content, dict):
		raise ValidationError("invalid_content")
	try:
		return StatusContentIn.model_validate(content)
	except PydanticValidationError:
		raise ValidationError("invalid_content") from None


class StatusService:
	def __init__(
		self,
		repository: Optional[StatusRepository] = None,
		users: Optional[UserRepository] = None,
		clock: Optional[Callable[[], datetime]] = None,
	) -> None:
		self._repo = repository or get_repository()
		self._users = users or get_user_repository()
		self._clock = clock or _now

	# ------------------------------------------------------------------
	# Helpers

	async def _require_user(self, user_id: str) -> User:
		user = await self._users.get(user_id)
		if user is None:
			raise NotFoundError("user_not_found")
		return user

	async def _render(
		self,
		status: Status,
		*,
		viewer: User,
		users: Optional[dict[str, User]] = None,
	) -> StatusOut:
		"""Serialise a status for ``viewer``; viewer lists hide blocked accounts."""
		if users is None:
			ids = [status.owner_id, *status.viewed_by]
			users = {user.id: user for user in await self._users.get_many(ids)}
		blocked = viewer.block_set()
		visible = [
			entry
			for entry in status.viewers
			if entry.user_id == viewer.id or viewer.is_friend(entry.user_id) or entry.user_id not in blocked
		]
		rendered_viewers = []
		for entry in visible:
			user = users.get(entry.user_id)
			rendered_viewers.append(
				StatusViewerOut(
					user_id=entry.user_id,
					name=user.username if user else None,
					profile_picture=user.profile_picture if user else None,
					viewed_at=entry.viewed_at,
				)
			)
		owner = users.get(status.owner_id)
		return StatusOut(
			id=status.id,
			user_id=status.owner_id,
			owner_name=owner.username if owner else None,
			content=StatusContentOut(
				type=status.content.type.value,
				text=status.content.text,
				url=status.content.url,
				background_color=status.content.background_color,
			),
			viewed_by=[entry.user_id for entry in visible],
			viewers=rendered_viewers,
			total_views=status.total_views,
			is_active=status.is_active,
			expires_at=status.expires_at,
			created_at=status.created_at,
			updated_at=status.updated_at,
		)

	async def _render_many(self, statuses: Iterable[Status], *, viewer: User) -> List[StatusOut]:
		statuses = list(statuses)
		ids: set[str] = set()
		for status in statuses:
			ids.add(status.owner_id)
			ids.update(status.viewed_by)
		users = {user.id: user for user in await self._users.get_many(sorted(ids))}
		return [await self._render(status, viewer=viewer, users=users) for status in statuses]

	def _visible_friends(self, user: User) -> list[str]:
		blocked = user.block_set()
		return [fid for fid in user.friends if fid not in blocked]

	# ------------------------------------------------------------------
	# Operations

	async def create_status(
		self,
		auth_user: AuthenticatedUser,
		*,
		upload: Optional[Upload] = None,
		content: Any = None,
		text: Optional[str] = None,
		background_color: Optional[str] = None,
	) -> StatusOut:
		has_upload = upload is not None and upload.size > 0
		has_content = content not in (None, "", {})
		if not has_upload and not has_content:
			raise ValidationError("no_content")
		if has_upload and has_content:
			raise ValidationError("ambiguous_content")
		owner = await self._require_user(auth_user.id)

		if has_upload:
			parsed = _parse_content(
				{
					"type": "image",
					"text": text or "",
					**({"background_color": background_color} if background_color else {}),
				}
			)
		else:
			parsed = _parse_content(content)
			kind = ContentType(parsed.type)
			if kind is ContentType.TEXT and not parsed.text.strip():
				raise ValidationError("text_required")
			if kind is not ContentType.TEXT and not parsed.url:
				raise ValidationError("url_required")

		# Only well-formed uploads spend quota.
		allowed = await rate_limit.allow(
			"status_upload",
			owner.id,
			limit=settings.status_uploads_per_hour,
			window_seconds=3600,
		)
		if not allowed:
			raise QuotaExceeded("status_upload_rate")

		stored_url: Optional[str] = None
		if has_upload:
			stored = await get_store().store(upload, policy="status", owner_id=owner.id)
			stored_url = stored.url
			kind = ContentType.VIDEO if stored.kind == "video" else ContentType.IMAGE
		status_content = StatusContent(
			type=kind,
			text=parsed.text,
			url=stored_url if has_upload else parsed.url,
			background_color=parsed.background_color,
		)

		now = self._clock()
		try:
			status = await self._repo.create(
				owner.id,
				status_content,
				created_at=now,
				expires_at=now + timedelta(hours=settings.status_ttl_hours),
			)
		except Exception:
			if stored_url is not None:
				await release(stored_url, source="status")
			raise
		obs_metrics.inc_status_created(kind.value)
		logger.info("status created status_id=%s owner_id=%s kind=%s", status.id, owner.id, kind.value)
		rendered = await self._render(status, viewer=owner)
		await sockets.emit_status_uploaded(
			owner.id,
			self._visible_friends(owner),
			{"status": rendered.model_dump(mode="json"), "user_id": owner.id, "user_name": owner.username},
		)
		return rendered

	async def list_feed(self, auth_user: AuthenticatedUser) -> FeedResponse:
		user = await self._require_user(auth_user.id)
		now = self._clock()
		friend_ids = self._visible_friends(user)
		statuses = await self._repo.list_live_for_owners([user.id, *friend_ids], now)

		mine = [status for status in statuses if status.owner_id == user.id]
		by_author: dict[str, list[Status]] = {}
		for status in statuses:
			if status.owner_id != user.id:
				by_author.setdefault(status.owner_id, []).append(status)

		authors = {author.id: author for author in await self._users.get_many(by_author)}
		groups: list[StatusGroup] = []
		for author_id, authored in by_author.items():
			authored.sort(key=lambda s: (s.created_at, s.id), reverse=True)
			author = authors.get(author_id)
			groups.append(
				StatusGroup(
					user_id=author_id,
					user_name=author.username if author else author_id,
					profile_picture=author.profile_picture if author else None,
					statuses=await self._render_many(authored, viewer=user),
					has_unviewed=any(not status.has_viewer(user.id) for status in authored),
					last_status_time=authored[0].created_at,
				)
			)
		groups.sort(key=lambda g: g.last_status_time, reverse=True)
		groups.sort(key=lambda g: not g.has_unviewed)
		return FeedResponse(status_groups=groups, my_statuses=await self._render_many(mine, viewer=user))

	async def _check_viewable(self, viewer: User, status: Status) -> None:
		if not viewer.is_friend(status.owner_id):
			raise ForbiddenError("not_friends")
		if viewer.has_block_with(status.owner_id):
			raise ForbiddenError("blocked")

	async def mark_viewed(self, auth_user: AuthenticatedUser, status_id: str) -> ViewResponse:
		if not is_valid_status_id(status_id):
			raise ValidationError("invalid_status_id")
		viewer = await self._require_user(auth_user.id)
		now = self._clock()
		status = await self._repo.get_live(status_id.upper(), now)
		if status is None:
			raise NotFoundError("status_not_found")

		if status.owner_id == viewer.id:
			obs_metrics.inc_status_view("own")
			return ViewResponse(
				message="Cannot view own status",
				was_new_view=False,
				total_views=status.total_views,
				status_owner_id=status.owner_id,
				status=await self._render(status, viewer=viewer),
			)

		await self._check_viewable(viewer, status)
		was_new = await self._repo.add_view(status.id, viewer.id, now)
		refreshed = await self._repo.get_live(status.id, now) or status
		if was_new:
			obs_metrics.inc_status_view("new")
			await self._notify_viewed(refreshed, viewer, now)
		else:
			obs_metrics.inc_status_view("repeat")
		return ViewResponse(
			message="Status marked as viewed" if was_new else "Status already viewed",
			was_new_view=was_new,
			total_views=refreshed.total_views,
			status_owner_id=refreshed.owner_id,
			status=await self._render(refreshed, viewer=viewer),
		)

	async def _notify_viewed(self, status: Status, viewer: User, viewed_at: datetime) -> None:
		await sockets.emit_status_viewed(
			status.owner_id,
			{
				"status_id": status.id,
				"viewer_id": viewer.id,
				"viewer_name": viewer.username,
				"total_views": status.total_views,
				"viewed_at": viewed_at.isoformat(),
			},
		)

	async def mark_viewed_bulk(self, auth_user: AuthenticatedUser, status_ids: Optional[List[str]]) -> BulkViewResponse:
		if not isinstance(status_ids, list) or not status_ids:
			raise ValidationError("status_ids_required")
		valid_ids = [sid.upper() for sid in status_ids if is_valid_status_id(sid)]
		if not valid_ids:
			raise ValidationError("invalid_status_id")
		viewer = await self._require_user(auth_user.id)
		now = self._clock()

		eligible = [
			status
			for status in await self._repo.get_many_live(valid_ids, now)
			if status.owner_id != viewer.id
			and viewer.can_see_statuses_of(status.owner_id)
			and not status.has_viewer(viewer.id)
		]
		updated: list[Status] = []
		for status in eligible:
			if not await self._repo.add_view(status.id, viewer.id, now):
				continue
			refreshed = await self._repo.get_live(status.id, now) or status
			obs_metrics.inc_status_view("new")
			await self._notify_viewed(refreshed, viewer, now)
			updated.append(refreshed)
		return BulkViewResponse(
			processed_count=len(updated),
			total_requested=len(status_ids),
			updated_statuses=await self._render_many(updated, viewer=viewer),
		)

	async def delete_status(self, auth_user: AuthenticatedUser, status_id: str) -> None:
		if not is_valid_status_id(status_id):
			raise ValidationError("invalid_status_id")
		status = await self._repo.get(status_id.upper())
		if status is None or status.owner_id != auth_user.id:
			raise NotFoundError("status_not_found")
		if not await self._repo.delete(status.id):
			raise NotFoundError("status_not_found")
		obs_metrics.inc_status_deleted()
		if status.content.has_media:
			await release(status.content.url, source="status")
		owner = await self._users.get(auth_user.id)
		friends = self._visible_friends(owner) if owner else []
		await sockets.emit_status_deleted(friends, {"status_id": status.id, "user_id": status.owner_id})
		logger.info("status deleted status_id=%s owner_id=%s", status.id, status.owner_id)

	async def list_my_statuses(self, auth_user: AuthenticatedUser) -> MyStatusesResponse:
		user = await self._require_user(auth_user.id)
		statuses = await self._repo.list_live_for_owners([user.id], self._clock())
		rendered = await self._render_many(statuses, viewer=user)
		return MyStatusesResponse(statuses=rendered, count=len(rendered))

	async def get_status(self, auth_user: AuthenticatedUser, status_id: str) -> StatusDetail:
		if not is_valid_status_id(status_id):
			raise ValidationError("invalid_status_id")
		viewer = await self._require_user(auth_user.id)
		now = self._clock()
		status = await self._repo.get_live(status_id.upper(), now)
		if status is None:
			raise NotFoundError("status_not_found")
		if status.owner_id != viewer.id:
			await self._check_viewable(viewer, status)
		rendered = await self._render(status, viewer=viewer)
		return StatusDetail(
			**rendered.model_dump(),
			has_user_viewed=status.has_viewer(viewer.id),
			is_expired=status.expires_at <= now,
		)

	async def list_status_authors(self, auth_user: AuthenticatedUser) -> List[StatusAuthor]:
		user = await self._require_user(auth_user.id)
		friends = await self._users.get_many(self._visible_friends(user))
		return [
			StatusAuthor(id=f.id, name=f.username, profile_picture=f.profile_picture, online=f.is_online)
			for f in friends
		]


_SERVICE = StatusService()


def get_service() -> StatusService:
	return _SERVICE


async def create_status(
	auth_user: AuthenticatedUser,
	*,
	upload: Optional[Upload] = None,
	content: Any = None,
	text: Optional[str] = None,
	background_color: Optional[str] = None,
) -> StatusOut:
	return await _SERVICE.create_status(
		auth_user,
		upload=upload,
		content=content,
		text=text,
		background_color=background_color,
	)


async def list_feed(auth_user: AuthenticatedUser) -> FeedResponse:
	return await _SERVICE.list_feed(auth_user)


async def mark_viewed(auth_user: AuthenticatedUser, status_id: str) -> ViewResponse:
	return await _SERVICE.mark_viewed(auth_user, status_id)


async def mark_viewed_bulk(auth_user: AuthenticatedUser, status_ids: Optional[List[str]]) -> BulkViewResponse:
	return await _SERVICE.mark_viewed_bulk(auth_user, status_ids)


async def delete_status(auth_user: AuthenticatedUser, status_id: str) -> None:
	await _SERVICE.delete_status(auth_user, status_id)


async def list_my_statuses(auth_user: AuthenticatedUser) -> MyStatusesResponse:
	return await _SERVICE.list_my_statuses(auth_user)


async def get_status(auth_user: AuthenticatedUser, status_id: str) -> StatusDetail:
	return await _SERVICE.get_status(auth_user, status_id)


async def list_status_authors(auth_user: AuthenticatedUser) -> List[StatusAuthor]:
	return await _SERVICE.list_status_authors(auth_user)
