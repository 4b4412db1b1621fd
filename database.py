"""
MongoDB connection lifecycle and document helpers.

The client is opened by the app lifespan (connect) and released on
shutdown (close). Route handlers receive the database through the get_db
dependency so tests can swap in another database.
"""
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from fastapi import HTTPException, status
from pydantic import BaseModel
from pymongo import DESCENDING, MongoClient
from pymongo.database import Database

import config
from logger import get_logger

_logger = get_logger(__name__)

_client: Optional[MongoClient] = None
_db: Optional[Database] = None

HIDDEN_FIELDS = {"password_hash"}


def connect(url: Optional[str] = None, name: Optional[str] = None) -> Database:
    global _client, _db
    if _db is not None:
        return _db
    url = url or config.DATABASE_URL
    name = name or config.DATABASE_NAME
    _logger.info(f"Connecting to MongoDB database '{name}'...")
    _client = MongoClient(url)
    _db = _client[name]
    ensure_indexes(_db)
    return _db


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["cart"].create_index("user_id", unique=True)


def close() -> None:
    global _client, _db
    if _client is not None:
        _logger.info("Closing MongoDB connection")
        _client.close()
    _client = None
    _db = None


def get_db() -> Database:
    if _db is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database not connected")
    return _db


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with timestamps and return its id as a string."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    doc["created_at"] = now()
    doc["updated_at"] = now()
    res = db[collection_name].insert_one(doc)
    return str(res.inserted_id)


def to_object_id(value: Any, label: str) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        _logger.warning(f"Invalid {label} ID: {value}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {label} ID.")
    return ObjectId(value)


def serialize(value: Any) -> Any:
    """Make a document JSON friendly: _id becomes id, ObjectIds become strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k in HIDDEN_FIELDS:
                continue
            out["id" if k == "_id" else k] = serialize(v)
        return out
    return value


def _positive_int(raw: Optional[str], default: int, maximum: int) -> int:
    try:
        number = int(raw)
    except (TypeError, ValueError):
        return default
    if number < 1:
        return default
    # skip and limit must stay inside a BSON int64
    return min(number, maximum)


def parse_pagination(page: Optional[str], limit: Optional[str]) -> Tuple[int, int]:
    return (
        _positive_int(page, config.DEFAULT_PAGE, config.MAX_PAGE),
        _positive_int(limit, config.DEFAULT_LIMIT, config.MAX_LIMIT),
    )


def paginate(db: Database, collection_name: str, query: Dict[str, Any], page: int, limit: int) -> Tuple[List[dict], Dict[str, int]]:
    """Return one page of documents (newest first) and its pagination block."""
    skip = (page - 1) * limit
    cursor = db[collection_name].find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    docs = list(cursor.skip(skip).limit(limit))
    total = db[collection_name].count_documents(query)
    pagination = {
        "total": total,
        "current_page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit),
    }
    return docs, pagination


def envelope(message: str, data: Any = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"message": message, "success": True}
    if data is not None:
        body["data"] = serialize(data)
    body.update(extra)
    return body
