"""REST surface for friend requests and friendships."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from chatline.api.errors import HANDLED_ERRORS, map_domain_error
from chatline.domain.identity.schemas import MessageResponse, UserSummary
from chatline.domain.social import service
from chatline.domain.social.schemas import FriendActionResponse, FriendRequestsResponse, FriendshipStatusResponse
from chatline.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/api/friends", tags=["friends"])


def _map_error(exc: Exception) -> HTTPException:
	return map_domain_error(exc)


@router.post("/send-request/{user_id}", response_model=FriendActionResponse)
async def send_request(user_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> FriendActionResponse:
	try:
		user = await service.send_request(auth_user, user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return FriendActionResponse(message="Friend request sent", user=user)


@router.post("/accept-request/{user_id}", response_model=FriendActionResponse)
async def accept_request(user_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> FriendActionResponse:
	try:
		user = await service.accept_request(auth_user, user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return FriendActionResponse(message="Friend request accepted", user=user)


@router.post("/reject-request/{user_id}", response_model=MessageResponse)
async def reject_request(user_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> MessageResponse:
	try:
		await service.reject_request(auth_user, user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return MessageResponse(message="Friend request rejected")


@router.delete("/cancel-request/{user_id}", response_model=MessageResponse)
async def cancel_request(user_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> MessageResponse:
	try:
		message = await service.cancel_request(auth_user, user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return MessageResponse(message=message)


@router.get("/requests", response_model=FriendRequestsResponse)
async def list_requests(auth_user: AuthenticatedUser = Depends(get_current_user)) -> FriendRequestsResponse:
	try:
		return await service.list_requests(auth_user)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/friends", response_model=List[UserSummary])
@router.get("/list", response_model=List[UserSummary])
async def list_friends(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[UserSummary]:
	try:
		return await service.list_friends(auth_user)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.delete("/remove/{user_id}", response_model=MessageResponse)
async def remove_friend(user_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> MessageResponse:
	try:
		await service.remove_friend(auth_user, user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return MessageResponse(message="Friend removed")


@router.get("/search", response_model=List[UserSummary])
async def search_users(
	query: str = Query(default="", max_length=64),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[UserSummary]:
	try:
		return await service.search(auth_user, query)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/status/{user_id}", response_model=FriendshipStatusResponse)
async def friendship_status(user_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> FriendshipStatusResponse:
	try:
		return await service.friendship_status(auth_user, user_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
