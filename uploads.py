"""
Validation and storage of uploaded video parts.

Files are written flat into the upload directory under a storage name of the
form ``{uuid hex}-{original file name}``. The name is created with exclusive
mode, so two requests never end up writing the same file.
"""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Optional, Tuple

from fastapi import UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from config import Settings, get_settings
from errors import PayloadTooLarge, UnsupportedMediaType

logger = logging.getLogger(__name__)

ALLOWED_MEDIA_TYPES = frozenset({"video/mp4", "video/mpeg"})
MAX_UPLOAD_BYTES = 100 * 1024 * 1024
CHUNK_SIZE = 1024 * 1024
# Room for the text fields and multipart boundaries around the two videos
FORM_OVERHEAD_BYTES = 1024 * 1024

_UNSAFE_CHARS = re.compile(r"[^\w.\-]")


@dataclass
class StoredFile:
    storage_name: str
    path: Path
    original_name: str
    media_type: str
    size: int

    def discard(self) -> None:
        self.path.unlink(missing_ok=True)


def ensure_directory(path: str | Path) -> Path:
    """Create the upload directory if it is missing. Safe to call repeatedly."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def safe_filename(original: Optional[str]) -> str:
    # Client names may carry directories (either separator) or odd characters
    name = (original or "").replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE_CHARS.sub("_", name).lstrip(".")
    return name or "upload"


def generate_storage_name(original: Optional[str], directory: Path) -> str:
    base = safe_filename(original)
    while True:
        name = f"{uuid.uuid4().hex}-{base}"
        if not (directory / name).exists():
            return name


def check_media_type(upload: UploadFile, allowed: Iterable[str] = ALLOWED_MEDIA_TYPES) -> None:
    if upload.content_type not in set(allowed):
        logger.warning(
            "Rejected upload %r with media type %r", upload.filename, upload.content_type
        )
        raise UnsupportedMediaType()


def _open_exclusive(directory: Path, original: Optional[str]) -> Tuple[str, Path, BinaryIO]:
    while True:
        name = generate_storage_name(original, directory)
        target = directory / name
        try:
            return name, target, target.open("xb")
        except FileExistsError:
            continue


def _copy_limited(source: BinaryIO, directory: Path, original: Optional[str], max_bytes: int) -> Tuple[str, Path, int]:
    """Copy ``source`` into a new file, aborting once ``max_bytes`` is exceeded."""
    if hasattr(source, "seek"):
        source.seek(0)
    name, target, buffer = _open_exclusive(directory, original)
    written = 0
    try:
        with buffer:
            while True:
                chunk = source.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise PayloadTooLarge()
                buffer.write(chunk)
    except Exception:
        target.unlink(missing_ok=True)
        raise
    return name, target, written


async def store_upload(
    upload: UploadFile,
    directory: str | Path,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> StoredFile:
    declared = getattr(upload, "size", None)
    if declared is not None and declared > max_bytes:
        logger.warning("Rejected upload %r: declared size %d exceeds limit", upload.filename, declared)
        raise PayloadTooLarge()

    try:
        name, target, size = await run_in_threadpool(
            _copy_limited, upload.file, Path(directory), upload.filename, max_bytes
        )
    except PayloadTooLarge:
        logger.warning("Rejected upload %r: exceeds %d bytes", upload.filename, max_bytes)
        raise

    logger.info("Stored upload %r", upload.filename, extra={"storage_name": name})
    return StoredFile(
        storage_name=name,
        path=target,
        original_name=upload.filename or "",
        media_type=upload.content_type or "",
        size=size,
    )


def request_body_limit(settings: Settings, overhead: int = FORM_OVERHEAD_BYTES) -> int:
    return 2 * settings.max_upload_bytes + overhead


class UploadLimitMiddleware:
    """Refuse upload bodies that cannot hold two allowed videos.

    Runs before the form is parsed, so an oversized request is never spooled
    in full. A declared ``Content-Length`` over the limit is refused without
    reading the body; otherwise the body is counted as it streams in and the
    request is cut off as soon as the limit is passed.
    """

    def __init__(
        self,
        app: ASGIApp,
        paths: Iterable[str] = ("/courses",),
        settings_provider: Callable[[], Settings] = get_settings,
        overhead: int = FORM_OVERHEAD_BYTES,
    ) -> None:
        self.app = app
        self.paths = frozenset(paths)
        self.settings_provider = settings_provider
        self.overhead = overhead

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] != "POST" or scope["path"] not in self.paths:
            await self.app(scope, receive, send)
            return

        limit = request_body_limit(self.settings_provider(), self.overhead)
        declared = Headers(scope=scope).get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > limit:
            logger.warning("Refused upload body of %s bytes, limit %d", declared, limit)
            await self._refuse(scope, receive, send)
            return

        received = 0
        refused = False

        async def limited_receive() -> Message:
            nonlocal received, refused
            if refused:
                return {"type": "http.disconnect"}
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    logger.warning("Cut off upload body after %d bytes, limit %d", received, limit)
                    refused = True
                    await self._refuse(scope, receive, send)
                    return {"type": "http.disconnect"}
            return message

        async def guarded_send(message: Message) -> None:
            # The refusal has already been sent; drop whatever the app answers
            if not refused:
                await send(message)

        try:
            await self.app(scope, limited_receive, guarded_send)
        except Exception:
            # Form parsing fails once the body is cut off; the client already has its answer
            if not refused:
                raise
            logger.debug("Upload handler stopped after the body was cut off", exc_info=True)

    @staticmethod
    async def _refuse(scope: Scope, receive: Receive, send: Send) -> None:
        response = JSONResponse(
            status_code=PayloadTooLarge.status_code,
            content={"message": PayloadTooLarge.message},
        )
        await response(scope, receive, send)
