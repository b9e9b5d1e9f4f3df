"""Group creation, membership and profile management."""

from __future__ import annotations

from typing import List, Optional

from chatline.domain.common.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from chatline.domain.identity.repo import UserRepository, get_repository as get_user_repository
from chatline.domain.media import Upload, get_store, release
from chatline.infra.auth import AuthenticatedUser
from chatline.obs import metrics as obs_metrics

from . import sockets
from .models import Group
from .repo import GroupRepository, get_repository
from .schemas import GroupCreateRequest, GroupMember, GroupResponse, GroupUpdateRequest


class GroupService:
	def __init__(
		self,
		repository: Optional[GroupRepository] = None,
		users: Optional[UserRepository] = None,
	) -> None:
		self._repo = repository or get_repository()
		self._users = users or get_user_repository()

	async def _render(self, group: Group) -> GroupResponse:
		ids = [group.creator_id, *group.members]
		users = {user.id: user for user in await self._users.get_many(ids)}

		def member(user_id: str) -> GroupMember:
			user = users.get(user_id)
			if user is None:
				return GroupMember(id=user_id, name=user_id)
			return GroupMember(id=user.id, name=user.username, profile_picture=user.profile_picture)

		return GroupResponse(
			id=group.id,
			name=group.name,
			description=group.description,
			creator=member(group.creator_id),
			members=[member(uid) for uid in group.members],
			picture=group.picture,
			created_at=group.created_at,
			updated_at=group.updated_at,
		)

	async def require_group(self, group_id: str) -> Group:
		group = await self._repo.get(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		return group

	async def require_member(self, group_id: str, user_id: str) -> Group:
		group = await self.require_group(group_id)
		if not group.is_member(user_id):
			raise ForbiddenError("not_member")
		return group

	async def require_admin(self, group_id: str, user_id: str) -> Group:
		group = await self.require_group(group_id)
		if not group.is_admin(user_id):
			raise ForbiddenError("not_admin")
		return group

	async def create_group(self, auth_user: AuthenticatedUser, payload: GroupCreateRequest) -> GroupResponse:
		name = payload.name.strip()
		if not name:
			raise ValidationError("name_required")
		members = list(dict.fromkeys([auth_user.id, *[m for m in payload.members if m]]))
		known = {user.id for user in await self._users.get_many(members)}
		missing = [uid for uid in members if uid not in known and uid != auth_user.id]
		if missing:
			raise NotFoundError("user_not_found")
		group = await self._repo.create(name, payload.description.strip(), auth_user.id, members)
		obs_metrics.inc_group_created()
		response = await self._render(group)
		await sockets.join_members(group.members, group.id)
		await sockets.emit_group_created(group.other_members(auth_user.id), response.model_dump(mode="json"))
		return response

	async def list_groups(self) -> List[GroupResponse]:
		return [await self._render(group) for group in await self._repo.list_all()]

	async def list_my_groups(self, auth_user: AuthenticatedUser) -> List[GroupResponse]:
		return [await self._render(group) for group in await self._repo.list_for_member(auth_user.id)]

	async def get_group(self, group_id: str) -> GroupResponse:
		return await self._render(await self.require_group(group_id))

	async def add_member(self, auth_user: AuthenticatedUser, group_id: str, user_id: str) -> GroupResponse:
		group = await self.require_admin(group_id, auth_user.id)
		if group.is_member(user_id):
			raise ConflictError("already_member")
		if await self._users.get(user_id) is None:
			raise NotFoundError("user_not_found")
		updated = await self._repo.add_member(group_id, user_id)
		if updated is None:
			raise NotFoundError("group_not_found")
		response = await self._render(updated)
		payload = response.model_dump(mode="json")
		await sockets.join_members([user_id], group_id)
		await sockets.emit_member_added(updated.members, {"group_id": group_id, "user_id": user_id})
		await sockets.emit_group_updated(updated.members, payload)
		return response

	async def remove_member(self, auth_user: AuthenticatedUser, group_id: str, user_id: str) -> GroupResponse:
		group = await self.require_group(group_id)
		if not group.is_admin(auth_user.id) and user_id != auth_user.id:
			raise ForbiddenError("not_admin")
		if group.is_admin(user_id):
			raise ForbiddenError("creator_cannot_leave")
		if user_id not in group.members:
			raise NotFoundError("not_member")
		updated = await self._repo.remove_member(group_id, user_id)
		if updated is None:
			raise NotFoundError("group_not_found")
		response = await self._render(updated)
		audience = [*updated.members, user_id]
		await sockets.emit_member_removed(audience, {"group_id": group_id, "user_id": user_id})
		await sockets.emit_group_updated(updated.members, response.model_dump(mode="json"))
		await sockets.leave_member(user_id, group_id)
		return response

	async def rename_group(
		self,
		auth_user: AuthenticatedUser,
		group_id: str,
		payload: GroupUpdateRequest,
	) -> GroupResponse:
		await self.require_admin(group_id, auth_user.id)
		fields: dict[str, str] = {}
		if payload.name is not None:
			name = payload.name.strip()
			if not name:
				raise ValidationError("name_required")
			fields["name"] = name
		if payload.description is not None:
			fields["description"] = payload.description.strip()
		if not fields:
			raise ValidationError("no_fields")
		updated = await self._repo.update(group_id, fields)
		if updated is None:
			raise NotFoundError("group_not_found")
		response = await self._render(updated)
		await sockets.emit_group_updated(updated.members, response.model_dump(mode="json"))
		return response

	async def update_picture(self, auth_user: AuthenticatedUser, group_id: str, upload: Upload) -> GroupResponse:
		group = await self.require_member(group_id, auth_user.id)
		stored = await get_store().store(upload, policy="group", owner_id=group_id)
		return await self._replace_picture(group, stored.url, auth_user.id)

	async def remove_picture(self, auth_user: AuthenticatedUser, group_id: str) -> GroupResponse:
		group = await self.require_member(group_id, auth_user.id)
		if not group.picture:
			raise NotFoundError("no_picture")
		return await self._replace_picture(group, None, auth_user.id)

	async def _replace_picture(self, group: Group, url: Optional[str], actor_id: str) -> GroupResponse:
		updated = await self._repo.update(group.id, {"picture": url})
		if updated is None:
			raise NotFoundError("group_not_found")
		await release(group.picture, source="group_picture")
		response = await self._render(updated)
		await sockets.emit_picture_updated(
			updated.members,
			{"group_id": group.id, "picture": url, "updated_by": actor_id},
		)
		await sockets.emit_group_updated(updated.members, response.model_dump(mode="json"))
		return response


_SERVICE = GroupService()


def get_service() -> GroupService:
	return _SERVICE


async def create_group(auth_user: AuthenticatedUser, payload: GroupCreateRequest) -> GroupResponse:
	return await _SERVICE.create_group(auth_user, payload)


async def list_groups() -> List[GroupResponse]:
	return await _SERVICE.list_groups()


async def list_my_groups(auth_user: AuthenticatedUser) -> List[GroupResponse]:
	return await _SERVICE.list_my_groups(auth_user)


async def get_group(group_id: str) -> GroupResponse:
	return await _SERVICE.get_group(group_id)


async def add_member(auth_user: AuthenticatedUser, group_id: str, user_id: str) -> GroupResponse:
	return await _SERVICE.add_member(auth_user, group_id, user_id)


async def remove_member(auth_user: AuthenticatedUser, group_id: str, user_id: str) -> GroupResponse:
	return await _SERVICE.remove_member(auth_user, group_id, user_id)


async def rename_group(auth_user: AuthenticatedUser, group_id: str, payload: GroupUpdateRequest) -> GroupResponse:
	return await _SERVICE.rename_group(auth_user, group_id, payload)


async def update_picture(auth_user: AuthenticatedUser, group_id: str, upload: Upload) -> GroupResponse:
	return await _SERVICE.update_picture(auth_user, group_id, upload)


async def remove_picture(auth_user: AuthenticatedUser, group_id: str) -> GroupResponse:
	return await _SERVICE.remove_picture(auth_user, group_id)
