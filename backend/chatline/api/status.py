"""REST surface for ephemeral statuses (stories)."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from chatline.api.errors import HANDLED_ERRORS, map_domain_error
from chatline.api.uploads import read_upload
from chatline.domain.status import service
from chatline.domain.status.schemas import (
	BulkViewRequest,
	BulkViewResponse,
	DeleteResponse,
	FeedResponse,
	MyStatusesResponse,
	StatusAuthor,
	StatusDetail,
	StatusOut,
	ViewResponse,
)
from chatline.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/api/status", tags=["status"])


def _map_error(exc: Exception) -> HTTPException:
	return map_domain_error(exc)


@router.get("/", response_model=FeedResponse)
async def get_feed(auth_user: AuthenticatedUser = Depends(get_current_user)) -> FeedResponse:
	try:
		return await service.list_feed(auth_user)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/upload-status", response_model=StatusOut, status_code=status.HTTP_201_CREATED)
async def upload_status(
	file: Optional[UploadFile] = File(default=None),
	content: Optional[str] = Form(default=None),
	text: Optional[str] = Form(default=None),
	background_color: Optional[str] = Form(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> StatusOut:
	upload = await read_upload(file)
	try:
		return await service.create_status(
			auth_user,
			upload=upload,
			content=content,
			text=text,
			background_color=background_color,
		)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/users", response_model=List[StatusAuthor])
async def list_status_authors(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[StatusAuthor]:
	try:
		return await service.list_status_authors(auth_user)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/my-statuses", response_model=MyStatusesResponse)
async def list_my_statuses(auth_user: AuthenticatedUser = Depends(get_current_user)) -> MyStatusesResponse:
	try:
		return await service.list_my_statuses(auth_user)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.put("/bulk-view", response_model=BulkViewResponse)
async def bulk_view(
	payload: BulkViewRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> BulkViewResponse:
	try:
		return await service.mark_viewed_bulk(auth_user, payload.status_ids)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.put("/{status_id}/view", response_model=ViewResponse)
async def view_status(status_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> ViewResponse:
	try:
		return await service.mark_viewed(auth_user, status_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/{status_id}", response_model=StatusDetail)
async def get_status(status_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> StatusDetail:
	try:
		return await service.get_status(auth_user, status_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.delete("/{status_id}", response_model=DeleteResponse)
async def delete_status(status_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> DeleteResponse:
	try:
		await service.delete_status(auth_user, status_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return DeleteResponse()
