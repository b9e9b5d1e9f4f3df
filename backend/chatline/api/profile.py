"""REST surface for the caller's profile and public profiles."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from chatline.api.errors import HANDLED_ERRORS, map_domain_error
from chatline.api.uploads import read_upload
from chatline.domain.profile import service
from chatline.domain.profile.schemas import ProfileOut, ProfileUpdate
from chatline.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/api/profile", tags=["profile"])


def _map_error(exc: Exception) -> HTTPException:
	return map_domain_error(exc)


@router.get("/me", response_model=ProfileOut)
async def get_me(auth_user: AuthenticatedUser = Depends(get_current_user)) -> ProfileOut:
	try:
		return await service.get_profile(auth_user)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.put("/me", response_model=ProfileOut)
async def update_me(
	payload: ProfileUpdate,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ProfileOut:
	try:
		return await service.update_profile(auth_user, payload)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/picture", response_model=ProfileOut)
async def upload_picture(
	file: UploadFile = File(...),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ProfileOut:
	upload = await read_upload(file)
	try:
		return await service.upload_picture(auth_user, upload)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.delete("/picture", response_model=ProfileOut)
async def remove_picture(auth_user: AuthenticatedUser = Depends(get_current_user)) -> ProfileOut:
	try:
		return await service.remove_picture(auth_user)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/users/{user_id}", response_model=ProfileOut)
async def get_user(user_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> ProfileOut:
	try:
		return await service.get_user_profile(user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
