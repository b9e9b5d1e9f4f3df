"""Helpers turning multipart uploads into media-store inputs."""

from __future__ import annotations

from typing import Optional

from fastapi import UploadFile

from chatline.domain.media import Upload


async def read_upload(file: Optional[UploadFile]) -> Optional[Upload]:
    """Read an uploaded file fully into memory; None when nothing was sent."""
    if file is None:
        return None
    data = await file.read()
    await file.close()
    return Upload(
        filename=file.filename or "upload",
        content_type=(file.content_type or "application/octet-stream").lower(),
        data=data,
    )
