import logging
from typing import Any, Dict, List, Optional
from datetime import datetime
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import get_settings
from errors import InvalidIdentifier, PersistenceError

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        settings = get_settings()
        _client = AsyncIOMotorClient(settings.database_url)
        _db = _client[settings.database_name]
    return _db


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def parse_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as e:
        raise InvalidIdentifier() from e


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    try:
        # Unique email for users, unique username for admins
        await db["user"].create_index("email", unique=True)
        await db["admin"].create_index("username", unique=True)
    except PyMongoError as e:
        logger.error("Index creation failed: %s", e)
        raise PersistenceError() from e


async def create_document(db: AsyncIOMotorDatabase, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.utcnow().isoformat()
    data_to_insert = {**data, "created_at": now, "updated_at": now}
    try:
        result = await db[collection_name].insert_one(data_to_insert)
        inserted = await db[collection_name].find_one({"_id": result.inserted_id})
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        logger.error("Insert failed: %s", e, extra={"collection": collection_name})
        raise PersistenceError() from e
    return to_public(inserted) or {}


async def get_documents(
    db: AsyncIOMotorDatabase,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    filter_dict = filter_dict or {}
    cursor = db[collection_name].find(filter_dict)
    if limit:
        cursor = cursor.limit(limit)
    docs: List[Dict[str, Any]] = []
    try:
        async for doc in cursor:
            docs.append(to_public(doc))
    except PyMongoError as e:
        logger.error("Query failed: %s", e, extra={"collection": collection_name})
        raise PersistenceError() from e
    return docs


async def find_one(db: AsyncIOMotorDatabase, collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        doc = await db[collection_name].find_one(filter_dict)
    except PyMongoError as e:
        logger.error("Lookup failed: %s", e, extra={"collection": collection_name})
        raise PersistenceError() from e
    return to_public(doc)


async def get_document_by_id(db: AsyncIOMotorDatabase, collection_name: str, document_id: str) -> Optional[Dict[str, Any]]:
    return await find_one(db, collection_name, {"_id": parse_object_id(document_id)})


async def update_document(db: AsyncIOMotorDatabase, collection_name: str, document_id: str, updates: Dict[str, Any]) -> bool:
    updates = {**updates, "updated_at": datetime.utcnow().isoformat()}
    try:
        result = await db[collection_name].update_one({"_id": parse_object_id(document_id)}, {"$set": updates})
    except PyMongoError as e:
        logger.error("Update failed: %s", e, extra={"collection": collection_name})
        raise PersistenceError() from e
    return result.matched_count > 0
