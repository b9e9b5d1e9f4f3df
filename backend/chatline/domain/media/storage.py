"""Binary object storage behind a "store file, get URL" contract.

The bundled backend writes below ``settings.upload_dir`` and serves the files
from ``settings.media_base_url``. Services only ever see ``StoredMedia`` URLs,
so another backend can be installed with ``set_store``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Tuple

import ulid

from chatline.domain.common.errors import UpstreamFailure, ValidationError
from chatline.obs import metrics as obs_metrics
from chatline.settings import settings

logger = logging.getLogger(__name__)

MB = 1024 * 1024

_EXTENSIONS = {
	"image/jpeg": ".jpg",
	"image/png": ".png",
	"image/webp": ".webp",
	"image/gif": ".gif",
	"video/mp4": ".mp4",
	"video/webm": ".webm",
	"video/quicktime": ".mov",
	"audio/mpeg": ".mp3",
	"audio/ogg": ".ogg",
	"audio/wav": ".wav",
	"audio/webm": ".weba",
	"audio/mp4": ".m4a",
	"application/pdf": ".pdf",
	"text/plain": ".txt",
	"application/msword": ".doc",
	"application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
	"application/zip": ".zip",
}


@dataclass(slots=True, frozen=True)
class MediaPolicy:
	folder: str
	allowed: Tuple[str, ...]
	max_bytes: int

	def accepts(self, content_type: str) -> bool:
		lowered = content_type.lower()
		for entry in self.allowed:
			if entry.endswith("/") and lowered.startswith(entry):
				return True
			if lowered == entry:
				return True
		return False


POLICIES: dict[str, MediaPolicy] = {
	"status": MediaPolicy("statuses", ("image/", "video/"), 100 * MB),
	"avatar": MediaPolicy("avatars", ("image/jpeg", "image/png", "image/webp", "image/gif"), 5 * MB),
	"group": MediaPolicy("groups", ("image/jpeg", "image/png", "image/webp", "image/gif"), 5 * MB),
	"image": MediaPolicy("chat/images", ("image/",), 10 * MB),
	"video": MediaPolicy("chat/videos", ("video/",), 100 * MB),
	"audio": MediaPolicy("chat/audio", ("audio/",), 20 * MB),
	"document": MediaPolicy(
		"chat/documents",
		(
			"application/pdf",
			"text/plain",
			"application/msword",
			"application/vnd.openxmlformats-officedocument.wordprocessingml.document",
			"application/zip",
		),
		20 * MB,
	),
}


@dataclass(slots=True)
class Upload:
	"""A file received from a client, already read into memory."""

	filename: str
	content_type: str
	data: bytes

	@property
	def size(self) -> int:
		return len(self.data)

	@property
	def kind(self) -> str:
		major = self.content_type.split("/", 1)[0].lower()
		if major in ("image", "video", "audio"):
			return major
		return "document"


@dataclass(slots=True)
class StoredMedia:
	key: str
	url: str
	kind: str
	content_type: str
	size: int


class MediaStore(Protocol):
	async def store(self, upload: Upload, *, policy: str, owner_id: str) -> StoredMedia: ...

	async def delete(self, url_or_key: str) -> None: ...


def _extension(upload: Upload) -> str:
	ext = _EXTENSIONS.get(upload.content_type.lower())
	if ext:
		return ext
	suffix = Path(upload.filename or "").suffix.lower()
	return suffix if suffix and len(suffix) <= 8 else ".bin"


def validate_upload(upload: Upload, policy: MediaPolicy) -> None:
	if upload.size <= 0:
		raise ValidationError("empty_file")
	if not upload.content_type or not policy.accepts(upload.content_type):
		raise ValidationError("mime_invalid")
	if upload.size > policy.max_bytes:
		raise ValidationError("size_exceeded")


class LocalMediaStore:
	"""Filesystem-backed store; keys look like ``<folder>/<owner>/<ulid><ext>``."""

	def __init__(self, root: str | Path, base_url: str) -> None:
		self._root = Path(root).resolve()
		self._base_url = base_url.rstrip("/")

	@property
	def root(self) -> Path:
		return self._root

	def url_for(self, key: str) -> str:
		return f"{self._base_url}/{key}"

	def key_for(self, url_or_key: str) -> Optional[str]:
		if url_or_key.startswith(self._base_url + "/"):
			return url_or_key[len(self._base_url) + 1 :]
		if "://" in url_or_key:
			return None
		return url_or_key.lstrip("/")

	def _path_for(self, key: str) -> Path:
		target = (self._root / key).resolve()
		if self._root not in target.parents:
			raise ValidationError("invalid_path")
		return target

	async def store(self, upload: Upload, *, policy: str, owner_id: str) -> StoredMedia:
		rules = POLICIES[policy]
		validate_upload(upload, rules)
		key = f"{rules.folder}/{owner_id}/{ulid.new()}{_extension(upload)}"
		target = self._path_for(key)
		try:
			await asyncio.to_thread(_write_file, target, upload.data)
		except OSError as exc:
			logger.error("media store write failed key=%s", key, exc_info=True)
			raise UpstreamFailure("media_store_failed") from exc
		return StoredMedia(
			key=key,
			url=self.url_for(key),
			kind=upload.kind,
			content_type=upload.content_type,
			size=upload.size,
		)

	async def delete(self, url_or_key: str) -> None:
		key = self.key_for(url_or_key)
		if not key:
			raise UpstreamFailure("foreign_media_url")
		target = self._path_for(key)
		try:
			await asyncio.to_thread(target.unlink)
		except OSError as exc:
			raise UpstreamFailure("media_delete_failed") from exc


def _write_file(path: Path, data: bytes) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_bytes(data)


_store: MediaStore = LocalMediaStore(settings.upload_dir, settings.media_base_url)


def get_store() -> MediaStore:
	return _store


def set_store(store: MediaStore) -> None:
	global _store
	_store = store


async def release(url_or_key: Optional[str], *, source: str) -> bool:
	"""Best-effort removal of previously stored media; failures are logged and counted, never raised."""
	if not url_or_key:
		return False
	try:
		await _store.delete(url_or_key)
	except Exception:
		obs_metrics.inc_media_delete_failure(source)
		logger.warning("media cleanup failed source=%s target=%s", source, url_or_key, exc_info=True)
		return False
	return True
