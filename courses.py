"""
Course publishing and catalog reads.

A course is only written once both videos are on disk; if anything fails
afterwards the stored files are removed again, so callers either get a
complete course back or an error with nothing left behind.
"""
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase

from config import Settings
from database import create_document, get_document_by_id, get_documents
from errors import MissingField, NotFound, ValidationError
from schemas import Course
from uploads import StoredFile, check_media_type, store_upload

logger = logging.getLogger(__name__)

COLLECTION = "course"


def build_media_url(origin: str, storage_name: str) -> str:
    return f"{origin.rstrip('/')}/uploads/{storage_name}"


def parse_price(raw: Any) -> float:
    try:
        price = float(raw)
    except (TypeError, ValueError):
        raise ValidationError("price must be a non-negative number")
    if not math.isfinite(price) or price < 0:
        raise ValidationError("price must be a non-negative number")
    return price


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _missing_file(upload: Optional[UploadFile]) -> bool:
    return upload is None or not getattr(upload, "filename", None)


def build_course(
    course_name: Optional[str],
    description: Optional[str],
    price: Any,
    preview: Optional[StoredFile],
    full: Optional[StoredFile],
    origin: str,
) -> Course:
    if _blank(course_name) or _blank(description) or _blank(price) or preview is None or full is None:
        raise MissingField()
    return Course(
        courseName=course_name.strip(),
        description=description.strip(),
        price=parse_price(price),
        videoPreview=build_media_url(origin, preview.storage_name),
        fullVideo=build_media_url(origin, full.storage_name),
    )


async def publish_course(
    db: AsyncIOMotorDatabase,
    settings: Settings,
    course_name: Optional[str],
    description: Optional[str],
    price: Optional[str],
    video_preview: Optional[UploadFile],
    full_video: Optional[UploadFile],
    origin: str,
) -> Dict[str, Any]:
    if (
        _blank(course_name)
        or _blank(description)
        or _blank(price)
        or _missing_file(video_preview)
        or _missing_file(full_video)
    ):
        raise MissingField()
    parse_price(price)

    # Both parts are checked before either is written
    check_media_type(video_preview, settings.allowed_media_types)
    check_media_type(full_video, settings.allowed_media_types)

    directory = Path(settings.upload_dir)
    stored: List[StoredFile] = []
    try:
        stored.append(await store_upload(video_preview, directory, settings.max_upload_bytes))
        stored.append(await store_upload(full_video, directory, settings.max_upload_bytes))
        course = build_course(course_name, description, price, stored[0], stored[1], origin)
        created = await create_document(db, COLLECTION, course.model_dump())
    except Exception:
        for item in stored:
            item.discard()
        raise

    logger.info("Published course %s", created.get("id"))
    return created


async def list_courses(db: AsyncIOMotorDatabase) -> List[Dict[str, Any]]:
    return await get_documents(db, COLLECTION)


async def get_course(db: AsyncIOMotorDatabase, course_id: str) -> Dict[str, Any]:
    course = await get_document_by_id(db, COLLECTION, course_id)
    if not course:
        raise NotFound()
    return course
