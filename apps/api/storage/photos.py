"""Blob storage boundary for ticket photos."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

DEFAULT_MAX_BYTES = 5 * 1024 * 1024

_DATA_URL_RE = re.compile(r"^data:(?P<content_type>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


class PhotoRejectedError(ValueError):
    """Raised when an uploaded photo is malformed, too large or not an image."""


@dataclass(slots=True)
class PhotoUpload:
    content_type: str
    content: bytes


def decode_data_url(value: str, *, max_bytes: int = DEFAULT_MAX_BYTES) -> PhotoUpload:
    """Parse a ``data:<type>;base64,<payload>`` photo and validate it."""

    match = _DATA_URL_RE.match(value.strip())
    if match is None:
        raise PhotoRejectedError("Photo must be a base64 encoded data URL")

    content_type = match.group("content_type").lower()
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise PhotoRejectedError("Only image files are allowed")

    try:
        content = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PhotoRejectedError("Photo payload is not valid base64") from exc

    if not content:
        raise PhotoRejectedError("Photo is empty")
    if len(content) > max_bytes:
        raise PhotoRejectedError(f"Photo exceeds the {max_bytes} byte limit")
    return PhotoUpload(content_type=content_type, content=content)


class PhotoStorage(Protocol):
    async def save(self, upload: PhotoUpload) -> str:
        ...

    async def delete(self, reference: str) -> None:
        ...


class LocalPhotoStorage:
    """Store photos as files below a directory and hand out relative references."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    async def save(self, upload: PhotoUpload) -> str:
        extension = ALLOWED_CONTENT_TYPES[upload.content_type]
        reference = f"ticket-{uuid.uuid4().hex}{extension}"
        await asyncio.to_thread(self._write, reference, upload.content)
        logger.debug("Stored ticket photo %s (%d bytes)", reference, len(upload.content))
        return reference

    async def delete(self, reference: str) -> None:
        await asyncio.to_thread(self._remove, reference)

    def path_for(self, reference: str) -> Path:
        return self._root / Path(reference).name

    def _write(self, reference: str, content: bytes) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        self.path_for(reference).write_bytes(content)

    def _remove(self, reference: str) -> None:
        self.path_for(reference).unlink(missing_ok=True)
