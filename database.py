"""
MongoDB helpers

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; every
helper raises in that case so routes surface a 500 instead of crashing at
import time.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient

import config

logger = logging.getLogger(__name__)

db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set; database unavailable")


class DatabaseUnavailable(Exception):
    pass


def _now():
    return datetime.now(timezone.utc)


def get_collection(collection_name: str):
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    return db[collection_name]


def ensure_indexes():
    """Create the indexes the API relies on. Safe to call repeatedly."""
    if db is None:
        return
    db["user"].create_index("email", unique=True)


def create_document(collection_name: str, data) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as a string."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = _now()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = get_collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def to_public(value):
    """Convert Mongo documents to JSON-serializable data.

    `_id` becomes `id`, ObjectIds become hex strings, datetimes become ISO-8601
    (naive values are UTC) and password hashes are dropped.
    """
    if isinstance(value, dict):
        d = {}
        for k, v in value.items():
            if k == "password_hash":
                continue
            d["id" if k == "_id" else k] = to_public(v)
        return d
    if isinstance(value, (list, tuple)):
        return [to_public(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return value


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort=None):
    cursor = get_collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
