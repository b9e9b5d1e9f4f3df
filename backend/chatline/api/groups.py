"""REST surface for group chats."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from chatline.api.errors import HANDLED_ERRORS, map_domain_error
from chatline.api.uploads import read_upload
from chatline.domain.groups import service
from chatline.domain.groups.schemas import (
	GroupCreateRequest,
	GroupMemberRequest,
	GroupRemovalResponse,
	GroupResponse,
	GroupUpdateRequest,
)
from chatline.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/api/groups", tags=["groups"])


def _map_error(exc: Exception) -> HTTPException:
	return map_domain_error(exc)


@router.post("/create", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
	payload: GroupCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> GroupResponse:
	try:
		return await service.create_group(auth_user, payload)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/all", response_model=List[GroupResponse])
async def list_groups(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[GroupResponse]:
	return await service.list_groups()


@router.get("/my-groups", response_model=List[GroupResponse])
async def list_my_groups(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[GroupResponse]:
	return await service.list_my_groups(auth_user)


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(group_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> GroupResponse:
	try:
		return await service.get_group(group_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.put("/{group_id}", response_model=GroupResponse)
async def rename_group(
	group_id: str,
	payload: GroupUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> GroupResponse:
	try:
		return await service.rename_group(auth_user, group_id, payload)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/{group_id}/members", response_model=GroupResponse)
async def add_member(
	group_id: str,
	payload: GroupMemberRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> GroupResponse:
	try:
		return await service.add_member(auth_user, group_id, payload.user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.delete("/{group_id}/members/{user_id}", response_model=GroupRemovalResponse)
async def remove_member(
	group_id: str,
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> GroupRemovalResponse:
	try:
		group = await service.remove_member(auth_user, group_id, user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	message = "Left group" if user_id == auth_user.id else "Member removed"
	return GroupRemovalResponse(message=message, group=group)


@router.post("/{group_id}/picture", response_model=GroupResponse)
async def update_picture(
	group_id: str,
	file: UploadFile = File(...),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> GroupResponse:
	upload = await read_upload(file)
	try:
		return await service.update_picture(auth_user, group_id, upload)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.delete("/{group_id}/picture", response_model=GroupResponse)
async def remove_picture(group_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> GroupResponse:
	try:
		return await service.remove_picture(auth_user, group_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
