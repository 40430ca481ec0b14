"""MongoDB access helpers.

Collections are named after the documents in :mod:`schemas` (``user``,
``product``, ``cart``, ``favorite``, ``order``).
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from errors import NotFound
from log import get_logger

logger = get_logger(__name__)


def connect(url: str, name: str) -> Database:
    client = MongoClient(url, serverSelectionTimeoutMS=5000, socketTimeoutMS=45000, tz_aware=True)
    return client[name]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["user"].create_index("phone", unique=True)
    db["product"].create_index("slug", unique=True)
    db["product"].create_index("price")
    db["product"].create_index("in_stock")
    db["cart"].create_index("user", unique=True)
    db["favorite"].create_index([("user", ASCENDING), ("product", ASCENDING)], unique=True)
    db["order"].create_index("user")
    db["order"].create_index("payment_session_id")
    logger.info("indexes ensured", database=db.name)


def now() -> datetime:
    return datetime.now(timezone.utc)


def object_id(value: Union[str, ObjectId], what: str = "Resource") -> ObjectId:
    """Parse an identity, treating a malformed one as a missing entity."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise NotFound(f"{what} not found")
    return ObjectId(value)


def create_document(db: Database, collection_name: str, data: Dict[str, Any]) -> ObjectId:
    """Insert ``data`` stamped with ``created_at``/``updated_at``; ``data`` gains its ``_id``."""
    data.setdefault("created_at", now())
    data.setdefault("updated_at", data["created_at"])
    result = db[collection_name].insert_one(data)
    return result.inserted_id


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
    skip: int = 0,
    limit: int = 0,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(list(sort))
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def paginate(
    db: Database,
    collection_name: str,
    filter_dict: Dict[str, Any],
    sort: Sequence[Tuple[str, int]],
    page: int,
    limit: int,
) -> Tuple[List[Dict[str, Any]], int]:
    """Return one page of documents and the total count for ``filter_dict``."""
    skip = (page - 1) * limit
    items = get_documents(db, collection_name, filter_dict, sort, skip, limit)
    total = db[collection_name].count_documents(filter_dict)
    return items, total


NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]
