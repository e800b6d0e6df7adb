"""
MongoDB access layer.

Holds the shared client/database handles and a thin ``Repository``
wrapper over a pymongo collection. The wrapper is the store contract the
order and review workflows rely on: CRUD plus queries, a distinguishable
error for unique-index collisions, and every other driver failure
surfaced as a transient store error.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from errors import TransientStoreError, UniqueConstraintError, ValidationError

logger = logging.getLogger(__name__)

client = None
db = None


def connect(client_: Optional[Any] = None, url: Optional[str] = None, name: Optional[str] = None):
    """Bind the module-level database handle.

    ``client_`` lets callers hand in an existing client (tests pass a
    mongomock client); otherwise a pymongo client is built from settings.
    """
    global client, db
    settings = config.settings
    client = client_ if client_ is not None else MongoClient(url or settings.database_url)
    db = client[name or settings.database_name]
    ensure_indexes()
    return db


def get_db():
    if db is None:
        connect()
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo hands back naive datetimes that are already UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_obj_id(id_str: Union[str, ObjectId]) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def serialize(doc: Any):
    """Turn a stored document into JSON-friendly data (``_id`` -> ``id``)."""
    if isinstance(doc, list):
        return [serialize(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if not isinstance(doc, dict):
        return doc
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = str(value)
        else:
            out[key] = serialize(value)
    return out


@contextmanager
def _translate_errors(collection_name: str):
    try:
        yield
    except DuplicateKeyError as e:
        raise UniqueConstraintError(f"Duplicate key in {collection_name}") from e
    except PyMongoError as e:
        logger.exception("Store operation on %s failed", collection_name)
        raise TransientStoreError("The data store is temporarily unavailable") from e


class Repository:
    """CRUD and query operations over one collection."""

    def __init__(self, collection):
        self.collection = collection
        self.name = collection.name

    def find_by_id(self, doc_id) -> Optional[dict]:
        with _translate_errors(self.name):
            return self.collection.find_one({"_id": to_obj_id(doc_id)})

    def find_one(self, query: Dict[str, Any]) -> Optional[dict]:
        with _translate_errors(self.name):
            return self.collection.find_one(query)

    def find(self, query: Optional[Dict[str, Any]] = None, sort: Optional[List[tuple]] = None,
             limit: int = 0, skip: int = 0) -> List[dict]:
        with _translate_errors(self.name):
            cursor = self.collection.find(query or {})
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

    def insert(self, doc: Dict[str, Any]) -> ObjectId:
        now = utcnow()
        doc.setdefault("createdAt", now)
        doc.setdefault("updatedAt", now)
        with _translate_errors(self.name):
            res = self.collection.insert_one(doc)
        return res.inserted_id

    def update_by_id(self, doc_id, update: Dict[str, Any],
                     conditions: Optional[Dict[str, Any]] = None) -> Optional[dict]:
        """Apply ``update`` and return the document after the write.

        A plain field mapping is treated as ``$set``. ``conditions`` narrows
        the match (compare-and-set); ``None`` is returned when nothing matched.
        """
        if not any(key.startswith("$") for key in update):
            update = {"$set": update}
        else:
            update = dict(update)
        update["$set"] = {**update.get("$set", {}), "updatedAt": utcnow()}
        query = {"_id": to_obj_id(doc_id), **(conditions or {})}
        with _translate_errors(self.name):
            return self.collection.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)

    def upsert_counter(self, key: str, update: Dict[str, Any]) -> dict:
        with _translate_errors(self.name):
            return self.collection.find_one_and_update(
                {"_id": key}, update, upsert=True, return_document=ReturnDocument.AFTER
            )

    def delete_by_id(self, doc_id) -> bool:
        with _translate_errors(self.name):
            res = self.collection.delete_one({"_id": to_obj_id(doc_id)})
        return res.deleted_count > 0

    def delete_many(self, query: Dict[str, Any]) -> int:
        with _translate_errors(self.name):
            return self.collection.delete_many(query).deleted_count

    def count_documents(self, query: Optional[Dict[str, Any]] = None) -> int:
        with _translate_errors(self.name):
            return self.collection.count_documents(query or {})

    def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[dict]:
        with _translate_errors(self.name):
            return list(self.collection.aggregate(pipeline))


def collection(name: str) -> Repository:
    return Repository(get_db()[name])


def ensure_indexes() -> None:
    db["order"].create_index([("orderNumber", ASCENDING)], unique=True)
    db["order"].create_index([("user", ASCENDING), ("createdAt", DESCENDING)])
    db["order"].create_index([("status", ASCENDING)])
    db["review"].create_index([("product", ASCENDING), ("user", ASCENDING)], unique=True)
    db["review"].create_index([("product", ASCENDING), ("isApproved", ASCENDING), ("createdAt", DESCENDING)])
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["product"].create_index([("slug", ASCENDING)], unique=True)
    db["product"].create_index([("sku", ASCENDING)], unique=True)
    db["category"].create_index([("name", ASCENDING)], unique=True)
