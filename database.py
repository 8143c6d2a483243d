"""
MongoDB access

One lazily created client per process. Handlers receive the database through
the ``get_db`` dependency so tests can swap it out.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_TIMEOUT_MS, DATABASE_URL

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        _client = MongoClient(
            DATABASE_URL,
            serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS,
            connectTimeoutMS=DATABASE_TIMEOUT_MS,
            socketTimeoutMS=DATABASE_TIMEOUT_MS,
        )
        logger.info("MongoDB client created for database %s", DATABASE_NAME)
    return _client


def get_db() -> Database:
    return get_client()[DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, sort: Optional[str] = None, limit: int = 0) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort, ASCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
        elif isinstance(v, list):
            doc[k] = [str(x) if isinstance(x, ObjectId) else serialize_doc(x) if isinstance(x, dict) else x for x in v]
    return doc


def parse_object_id(value: str, label: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail=f"Invalid {label} id")
    return ObjectId(value)


def ensure_indexes(db: Database):
    db["user"].create_index("email", unique=True)
    db["category"].create_index("name", unique=True)
    db["product"].create_index("category_id")
    db["review"].create_index("product_id")
    db["order"].create_index("user_id")
    db["cart"].create_index("user_id", unique=True)
    db["wishlist"].create_index("user_id", unique=True)
    db["cartitem"].create_index([("cart_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["wishlistitem"].create_index([("wishlist_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
