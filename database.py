"""
MongoDB access helpers.

Collections are named after the lowercase schema class name
(User -> "user", Category -> "category", ...). Every document gets
created_at / updated_at timestamps on insert.
"""

import logging
import math
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from errors import ValidationFailed
from settings import get_settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = MongoClient(settings.database_url)
    return _client


def get_db() -> Database:
    """FastAPI dependency returning the application database."""
    return get_client()[get_settings().database_name]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with timestamps and return its id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc["created_at"] = now
    doc["updated_at"] = now
    result = db[collection_name].insert_one(to_mongo(doc))
    return str(result.inserted_id)


def to_mongo(value: Any) -> Any:
    """Convert plain dates into midnight datetimes and enums into their values."""
    if isinstance(value, dict):
        return {k: to_mongo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_mongo(v) for v in value]
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min)
    if isinstance(value, Enum):
        return value.value
    return value


def as_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def parse_object_id(value: str, field: str = "id") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationFailed(
            "Invalid identifier",
            details=[{"field": field, "message": f"'{value}' is not a valid id"}],
        )


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a raw Mongo document into a JSON-friendly dict with a string id."""
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    out.pop("password_hash", None)
    return out


def pagination(page: int, page_size: int, total: int) -> Dict[str, int]:
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / page_size) if page_size else 0,
        "totalItems": total,
        "itemsPerPage": page_size,
    }


def paginate(collection, filters: Dict[str, Any], sort: List, page: int, page_size: int):
    """Run a 1-based paginated find and return (documents, pagination meta)."""
    skip = (page - 1) * page_size
    docs = list(collection.find(filters).sort(sort).skip(skip).limit(page_size))
    total = collection.count_documents(filters)
    return docs, pagination(page, page_size, total)


def ensure_indexes(db: Database) -> None:
    """Create the unique and lookup indexes the services rely on."""
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["user"].create_index([("fiscal_code", ASCENDING)], unique=True)

    db["category"].create_index(
        [("user_id", ASCENDING), ("name", ASCENDING)],
        unique=True,
        partialFilterExpression={"is_default": False, "is_active": True},
        name="unique_private_category_name",
    )
    db["category"].create_index(
        [("name", ASCENDING)],
        unique=True,
        partialFilterExpression={"is_default": True},
        name="unique_default_category_name",
    )
    db["category"].create_index([("is_default", ASCENDING), ("is_active", ASCENDING)])

    db["beneficiary"].create_index(
        [("user_id", ASCENDING), ("fiscal_code", ASCENDING)],
        unique=True,
        partialFilterExpression={"is_active": True},
        name="unique_active_beneficiary_fiscal_code",
    )
    db["beneficiary"].create_index([("user_id", ASCENDING), ("is_active", ASCENDING)])

    db["report"].create_index(
        [("user_id", ASCENDING), ("beneficiary_id", ASCENDING), ("period.start", DESCENDING)]
    )
    db["report"].create_index([("user_id", ASCENDING), ("year", DESCENDING)])
    db["report"].create_index([("state", ASCENDING)])
    logger.info("Database indexes ensured")
