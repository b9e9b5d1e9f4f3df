"""REST surface for direct and group messages."""

from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from chatline.api.errors import HANDLED_ERRORS, map_domain_error
from chatline.api.uploads import read_upload
from chatline.domain.chat import service
from chatline.domain.chat.schemas import (
	BulkReadResponse,
	ClearResponse,
	MessageIdsRequest,
	MessageOut,
	MessageStatusOut,
	ReactionRequest,
	ReactionResponse,
	SendGroupMessageRequest,
	SendMessageRequest,
	SoftDeleteRequest,
)
from chatline.domain.identity.schemas import MessageResponse, UserSummary
from chatline.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/api/messages", tags=["messages"])


def _map_error(exc: Exception) -> HTTPException:
	return map_domain_error(exc)


@router.post("/send", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
	payload: SendMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageOut:
	try:
		return await service.send_direct(auth_user, payload)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/group/send", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_group_message(
	payload: SendGroupMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageOut:
	try:
		return await service.send_group(auth_user, payload)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/upload/{kind}", response_model=Dict[str, List[str]])
async def upload_attachments(
	kind: str,
	files: List[UploadFile] = File(...),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, List[str]]:
	uploads = [await read_upload(f) for f in files]
	try:
		return await service.upload_attachments(auth_user, kind, uploads)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/fetch/group/{group_id}", response_model=List[MessageOut])
async def fetch_group(group_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[MessageOut]:
	try:
		return await service.list_group(auth_user, group_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/fetch/{peer_id}", response_model=List[MessageOut])
async def fetch_direct(peer_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[MessageOut]:
	try:
		return await service.list_direct(auth_user, peer_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.delete("/delete/{message_id}", response_model=MessageResponse)
async def delete_message(message_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> MessageResponse:
	try:
		await service.delete_message(auth_user, message_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None
	return MessageResponse(message="Message deleted")


@router.put("/soft-delete/{message_id}", response_model=MessageOut)
async def soft_delete(
	message_id: str,
	payload: SoftDeleteRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageOut:
	try:
		return await service.soft_delete(auth_user, message_id, for_everyone=payload.for_everyone)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.delete("/clear-private/{peer_id}", response_model=ClearResponse)
async def clear_private(peer_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> ClearResponse:
	try:
		return await service.clear_direct(auth_user, peer_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.delete("/clear-group/{group_id}", response_model=ClearResponse)
async def clear_group(group_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> ClearResponse:
	try:
		return await service.clear_group(auth_user, group_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/reactions/{message_id}", response_model=ReactionResponse)
async def toggle_reaction(
	message_id: str,
	payload: ReactionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ReactionResponse:
	try:
		return await service.toggle_reaction(auth_user, message_id, payload.emoji)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/reactions/{message_id}", response_model=Dict[str, List[UserSummary]])
async def list_reactions(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, List[UserSummary]]:
	try:
		return await service.list_reactions(auth_user, message_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/reactions/{message_id}/{emoji}", response_model=List[UserSummary])
async def reaction_details(
	message_id: str,
	emoji: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[UserSummary]:
	try:
		return await service.reaction_details(auth_user, message_id, emoji)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/mark-delivered/{message_id}", response_model=MessageStatusOut)
async def mark_delivered(message_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> MessageStatusOut:
	try:
		return await service.mark_delivered(auth_user, message_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/mark-read/{message_id}", response_model=MessageStatusOut)
async def mark_read(message_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> MessageStatusOut:
	try:
		return await service.mark_read(auth_user, message_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/mark-multiple-read", response_model=BulkReadResponse)
async def mark_multiple_read(
	payload: MessageIdsRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> BulkReadResponse:
	try:
		return await service.mark_read_bulk(auth_user, payload.message_ids)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.get("/status/{message_id}", response_model=MessageStatusOut)
async def message_status(message_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> MessageStatusOut:
	try:
		return await service.message_status(auth_user, message_id)
	except HANDLED_ERRORS as exc:
		raise _map_error(exc) from None


@router.post("/status-batch", response_model=Dict[str, MessageStatusOut])
async def status_batch(
	payload: MessageIdsRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, MessageStatusOut]:
	return await service.batch_status(auth_user, payload.message_ids)
