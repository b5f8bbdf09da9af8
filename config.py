"""
Runtime settings for the course catalog API.

Values come from the environment (and a local .env file when present) and are
parsed once; routes receive them through ``Depends(get_settings)``.
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    # Document store
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "app_db"

    # Bearer tokens
    jwt_secret: str = "dev-secret-key-change-in-prod"
    jwt_algorithm: str = "HS256"
    token_expire_minutes: int = 60

    # Uploads
    upload_dir: str = "uploads"
    max_upload_bytes: int = 100 * 1024 * 1024
    allowed_media_types: List[str] = ["video/mp4", "video/mpeg"]

    # Optional admin account created at startup
    admin_username: Optional[str] = None
    admin_password: Optional[str] = None

    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]
    port: int = 5000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "app_db"),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret-key-change-in-prod"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        token_expire_minutes=int(os.getenv("TOKEN_EXPIRE_MINUTES", "60")),
        upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
        max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(100 * 1024 * 1024))),
        allowed_media_types=_split(os.getenv("ALLOWED_MEDIA_TYPES", "video/mp4,video/mpeg")),
        admin_username=os.getenv("ADMIN_USERNAME") or None,
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=_split(os.getenv("CORS_ORIGINS", "*")),
        port=int(os.getenv("PORT", "5000")),
    )
