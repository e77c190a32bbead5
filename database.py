import logging
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from config import DATABASE_URL, DATABASE_NAME

logger = logging.getLogger(__name__)

USERS = "users"
LESSONS = "lessons"
FAVORITES = "favorites"
REPORTS = "reports"

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(DATABASE_URL)
        _db = _client[DATABASE_NAME]
    return _db


def close_db() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    # One user document per email; backs the login upsert
    await db[USERS].create_index("email", unique=True)
    # One favorite per (user, lesson); backs the save pre-check
    await db[FAVORITES].create_index([("userEmail", ASCENDING), ("lessonId", ASCENDING)], unique=True)
    await db[LESSONS].create_index([("creator.email", ASCENDING)])
    await db[LESSONS].create_index([("privacy", ASCENDING), ("createdAt", DESCENDING)])
    await db[REPORTS].create_index([("lessonId", ASCENDING)])


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_object_id(value: str) -> Optional[ObjectId]:
    """Return an ObjectId for ``value``, or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


async def create_document(db: AsyncIOMotorDatabase, collection_name: str, data: Dict[str, Any]) -> str:
    result = await db[collection_name].insert_one(data)
    logger.info("Inserted %s document %s", collection_name, result.inserted_id)
    return str(result.inserted_id)


async def get_documents(
    db: AsyncIOMotorDatabase,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[Any]] = None,
    limit: int = 0,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    filter_dict = filter_dict or {}
    cursor = db[collection_name].find(filter_dict, projection)
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    docs: List[Dict[str, Any]] = []
    async for doc in cursor:
        docs.append(serialize(doc))
    return docs


async def aggregate(db: AsyncIOMotorDatabase, collection_name: str, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    async for row in db[collection_name].aggregate(pipeline):
        rows.append(row)
    return rows


async def get_documents_by_ids(db: AsyncIOMotorDatabase, collection_name: str, ids: List[str]) -> Dict[str, Dict[str, Any]]:
    """Fetch documents by string id in one query, keyed by that id."""
    object_ids = [oid for oid in (to_object_id(i) for i in ids) if oid is not None]
    if not object_ids:
        return {}
    docs = await get_documents(db, collection_name, {"_id": {"$in": object_ids}})
    return {d["id"]: d for d in docs}
