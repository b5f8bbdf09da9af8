"""
Bearer token issuing and verification.

Tokens are HS256 JWTs with ``sub``, ``iat`` and ``exp`` claims (plus
``username`` for admins). Expiry is the only invalidation mechanism; rotating
``JWT_SECRET`` invalidates every outstanding token.

Admin logins additionally store the issued token on the admin record.
``lookup_last_token`` hands that token back to anyone who knows the admin's
username, without a password. That is an intentional, exposed capability of
``GET /admin/login`` and should be treated as a security risk.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from jose import JWTError, jwt
from motor.motor_asyncio import AsyncIOMotorDatabase

from config import Settings, get_settings
from credentials import ADMIN, Verified
from database import find_one, update_document
from errors import InvalidToken, TokenNotFound
from schemas import TokenClaims

logger = logging.getLogger(__name__)


class TokenIssuer:
    def __init__(self, secret: str, algorithm: str = "HS256", expires: timedelta = timedelta(hours=1)):
        if not secret:
            raise ValueError("A signing secret is required")
        self.secret = secret
        self.algorithm = algorithm
        self.expires = expires

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIssuer":
        return cls(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            expires=timedelta(minutes=settings.token_expire_minutes),
        )

    def issue(self, subject: Verified, now: Optional[datetime] = None) -> str:
        issued_at = int((now or datetime.now(timezone.utc)).timestamp())
        claims = {
            "sub": subject.identifier,
            "iat": issued_at,
            "exp": issued_at + int(self.expires.total_seconds()),
        }
        if subject.kind == ADMIN and subject.username:
            claims["username"] = subject.username
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            raise InvalidToken() from e
        return TokenClaims(**payload)


def get_token_issuer(settings: Settings = Depends(get_settings)) -> TokenIssuer:
    return TokenIssuer.from_settings(settings)


def issue_user_token(issuer: TokenIssuer, subject: Verified) -> str:
    return issuer.issue(subject)


async def issue_admin_token(db: AsyncIOMotorDatabase, issuer: TokenIssuer, subject: Verified) -> str:
    token = issuer.issue(subject)
    await update_document(db, "admin", subject.identifier, {"token": token})
    logger.info("Issued token for admin %s", subject.identifier)
    return token


async def lookup_last_token(db: AsyncIOMotorDatabase, username: Optional[str]) -> str:
    if not username or not username.strip():
        raise TokenNotFound()
    admin = await find_one(db, "admin", {"username": username.strip()})
    if not admin or not admin.get("token"):
        raise TokenNotFound()
    return admin["token"]
