"""
Credential checks for the two kinds of principals.

Users keep their password exactly as submitted and are checked by plain
equality; admins keep only a bcrypt hash. Callers go through
``verifier_for(kind).verify(...)`` and never see which policy applies, so the
user policy can be replaced without touching them.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError
from starlette.concurrency import run_in_threadpool

from config import Settings
from database import create_document, find_one, update_document
from errors import DuplicateEmail, NotFound, Rejected, ValidationError
from schemas import Admin, User, UserCreate

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

USER = "user"
ADMIN = "admin"


@dataclass(frozen=True)
class Verified:
    identifier: str
    username: Optional[str]
    kind: str


class CredentialVerifier(ABC):
    kind: str
    collection: str
    rejection_message: str

    @abstractmethod
    async def lookup(self, db: AsyncIOMotorDatabase, principal: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def matches(self, secret: str, record: Optional[Dict[str, Any]]) -> bool:
        ...

    async def verify(self, db: AsyncIOMotorDatabase, principal: Optional[str], secret: Optional[str]) -> Verified:
        record = await self.lookup(db, principal) if principal else None
        if not await self.matches(secret or "", record):
            logger.info("Rejected %s login", self.kind)
            raise Rejected(self.rejection_message)
        return Verified(identifier=record["id"], username=record.get("username"), kind=self.kind)


class PlaintextCredentialVerifier(CredentialVerifier):
    """Users: lookup by lower-cased email, exact comparison with the stored password."""

    kind = USER
    collection = "user"
    rejection_message = "Invalid email or password"

    async def lookup(self, db, principal):
        return await find_one(db, self.collection, {"email": principal.strip().lower()})

    async def matches(self, secret, record):
        if not record:
            return False
        return record.get("password") == secret


class HashedCredentialVerifier(CredentialVerifier):
    """Admins: lookup by trimmed username, bcrypt verification."""

    kind = ADMIN
    collection = "admin"
    rejection_message = "Invalid credentials"

    async def lookup(self, db, principal):
        return await find_one(db, self.collection, {"username": principal.strip()})

    async def matches(self, secret, record):
        hashed = record.get("password_hash") if record else None
        if not hashed:
            # Keep the miss path as slow as a real comparison
            await run_in_threadpool(pwd_context.dummy_verify)
            return False
        try:
            return await run_in_threadpool(pwd_context.verify, secret, hashed)
        except ValueError:
            logger.error("Stored admin hash is not a recognised bcrypt hash")
            return False


_VERIFIERS: Dict[str, CredentialVerifier] = {
    USER: PlaintextCredentialVerifier(),
    ADMIN: HashedCredentialVerifier(),
}


def verifier_for(kind: str) -> CredentialVerifier:
    try:
        return _VERIFIERS[kind]
    except KeyError:
        raise ValueError(f"Unknown principal kind: {kind}")


async def register_user(db: AsyncIOMotorDatabase, payload: UserCreate) -> Dict[str, Any]:
    if not payload.username or not payload.username.strip() or not payload.email or not payload.password:
        raise ValidationError("username, email and password are required")
    user = User(username=payload.username.strip(), email=payload.email, password=payload.password)

    existing = await find_one(db, "user", {"email": user.email})
    if existing:
        logger.warning("Registration refused: email already registered")
        raise DuplicateEmail()
    try:
        created = await create_document(db, "user", user.model_dump())
    except DuplicateKeyError as e:
        logger.warning("Registration refused: email already registered")
        raise DuplicateEmail() from e
    logger.info("Registered user %s", created.get("id"))
    return created


def hash_secret(secret: str) -> str:
    return pwd_context.hash(secret)


async def create_admin(db: AsyncIOMotorDatabase, username: str, password: str) -> Dict[str, Any]:
    if not username or not username.strip() or not password:
        raise ValidationError("username and password are required")
    hashed = await run_in_threadpool(hash_secret, password)
    admin = Admin(username=username, password_hash=hashed)
    try:
        created = await create_document(db, "admin", admin.model_dump())
    except DuplicateKeyError as e:
        raise ValidationError("Admin already exists") from e
    logger.info("Created admin %s", created.get("id"))
    return created


async def set_admin_password(db: AsyncIOMotorDatabase, username: str, password: str) -> None:
    if not password:
        raise ValidationError("password is required")
    admin = await find_one(db, "admin", {"username": username.strip()})
    if not admin:
        raise NotFound("Admin not found")
    hashed = await run_in_threadpool(hash_secret, password)
    await update_document(db, "admin", admin["id"], {"password_hash": hashed})
    logger.info("Updated password for admin %s", admin["id"])


async def seed_admin(db: AsyncIOMotorDatabase, settings: Settings) -> None:
    """Create the configured admin account, or re-hash it when its secret changed."""
    if not settings.admin_username or not settings.admin_password:
        return
    admin = await find_one(db, "admin", {"username": settings.admin_username.strip()})
    if admin is None:
        await create_admin(db, settings.admin_username, settings.admin_password)
        return
    if not await verifier_for(ADMIN).matches(settings.admin_password, admin):
        await set_admin_password(db, settings.admin_username, settings.admin_password)
