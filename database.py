"""
MongoDB connection and small document helpers.

`connect` returns None unless both the URL and the database name are set;
callers fall back to in-memory storage in that case.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

logger = logging.getLogger(__name__)


def connect(url: Optional[str], name: Optional[str]):
    if not url or not name:
        return None
    client = MongoClient(url)
    logger.info("Using MongoDB database %s", name)
    return client[name]


def ensure_indexes(db) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["cart"].create_index([("user_id", ASCENDING)], unique=True)


def create_document(db, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    doc = data.model_dump(mode="json") if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc["_id"] = doc.pop("id", None) or str(ObjectId())
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
