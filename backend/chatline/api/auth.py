"""REST surface for registration, login, blocking and password recovery."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from chatline.api.errors import HANDLED_ERRORS, map_domain_error
from chatline.domain.identity import service
from chatline.domain.identity.schemas import (
	BlockedUsersResponse,
	LoginRequest,
	LoginResponse,
	MessageResponse,
	PasswordForgotRequest,
	PasswordResetRequest,
	RegisterRequest,
	UserSummary,
)
from chatline.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _map_error(exc: Exception) -> HTTPException:
	return map_domain_error(exc)


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest) -> MessageResponse:
	try:
		await service.register(payload)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return MessageResponse(message="User registered successfully")


@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest) -> LoginResponse:
	try:
		return await service.login(payload)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/users", response_model=List[UserSummary])
async def list_users(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[UserSummary]:
	try:
		return await service.list_users(auth_user)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/block/{user_id}", response_model=MessageResponse)
async def block_user(user_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> MessageResponse:
	try:
		await service.block(auth_user, user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return MessageResponse(message="User blocked successfully")


@router.post("/unblock/{user_id}", response_model=MessageResponse)
async def unblock_user(user_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> MessageResponse:
	try:
		await service.unblock(auth_user, user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return MessageResponse(message="User unblocked successfully")


@router.get("/blocked-users", response_model=BlockedUsersResponse)
async def blocked_users(auth_user: AuthenticatedUser = Depends(get_current_user)) -> BlockedUsersResponse:
	try:
		return BlockedUsersResponse(blocked_users=await service.blocked_users(auth_user))
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/password/forgot", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
async def forgot_password(payload: PasswordForgotRequest) -> MessageResponse:
	try:
		await service.request_password_reset(str(payload.email))
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return MessageResponse(message="If the address is registered, a reset link has been sent")


@router.post("/password/reset", response_model=MessageResponse)
async def reset_password(payload: PasswordResetRequest) -> MessageResponse:
	try:
		await service.reset_password(payload.token, payload.new_password)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return MessageResponse(message="Password updated")
