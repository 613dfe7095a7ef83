"""
Database Helper Functions

MongoDB helpers used by the API endpoints. Every write is published on the
change feed so subscribed views can reconcile their local lists.
"""

from pymongo import MongoClient, ReturnDocument
from bson import ObjectId
from bson.errors import InvalidId
from datetime import datetime, timezone
import logging
import os
from dotenv import load_dotenv
from typing import Union, Optional, Dict, Any, List
from pydantic import BaseModel

from realtime import ChangeEvent, feed

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")


class DatabaseUnavailable(RuntimeError):
    """Raised when no MongoDB connection has been configured."""


class StaleRecord(RuntimeError):
    """Raised when a conditional update finds the record already changed."""


def ensure_indexes(database) -> None:
    # One account per email.
    database["user"].create_index("email", unique=True)
    database["session"].create_index("token", unique=True)


def connect(url: str, name: str):
    global _client, db
    _client = MongoClient(url)
    db = _client[name]
    ensure_indexes(db)
    logger.info("using MongoDB database %s", name)
    return db


def use_database(database) -> None:
    """Point the helpers at an already opened database handle."""
    global db
    db = database
    if database is not None:
        ensure_indexes(database)


if database_url and database_name:
    connect(database_url, database_name)


def _ensure_db():
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def _object_id(_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(_id)
    except (InvalidId, TypeError):
        return None


def _publish(collection_name: str, event_type: str, new: Optional[dict] = None, old: Optional[dict] = None) -> None:
    feed.publish(ChangeEvent(collection=collection_name, event_type=event_type, new=new, old=old))


# CRUD helpers

def create_document(collection_name: str, data: Union[BaseModel, dict]) -> dict:
    _ensure_db()
    payload = _to_dict(data)
    now = datetime.now(timezone.utc)
    payload['created_at'] = now
    payload['updated_at'] = now
    result = db[collection_name].insert_one(payload)
    payload['_id'] = result.inserted_id
    record = serialize_doc(payload)
    _publish(collection_name, "INSERT", new=record)
    return record


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None) -> List[dict]:
    _ensure_db()
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(int(limit))
    return [serialize_doc(doc) for doc in cursor]


def get_document_by_id(collection_name: str, _id: str) -> Optional[dict]:
    _ensure_db()
    oid = _object_id(_id)
    if oid is None:
        return None
    doc = db[collection_name].find_one({"_id": oid})
    return serialize_doc(doc) if doc else None


def find_document(collection_name: str, filter_dict: dict) -> Optional[dict]:
    _ensure_db()
    return serialize_doc(db[collection_name].find_one(filter_dict))


def count_documents(collection_name: str, filter_dict: Optional[dict] = None) -> int:
    _ensure_db()
    return db[collection_name].count_documents(filter_dict or {})


def update_document(collection_name: str, _id: str, update_data: Dict[str, Any], match: Optional[dict] = None) -> Optional[dict]:
    """Apply `$set` and return the stored record, or None when nothing matched.

    `match` adds conditions to the id lookup; when given and the record exists
    but no longer satisfies them, StaleRecord is raised instead.
    """
    _ensure_db()
    oid = _object_id(_id)
    if oid is None:
        return None
    changes = _to_dict(update_data)
    changes["updated_at"] = datetime.now(timezone.utc)
    before = db[collection_name].find_one_and_update(
        {"_id": oid, **(match or {})},
        {"$set": changes},
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        if match and db[collection_name].count_documents({"_id": oid}):
            raise StaleRecord(f"{collection_name} {_id} was changed by another session")
        return None
    # Only $set is applied, so the stored document is the old one plus the changes.
    record = serialize_doc({**before, **changes})
    _publish(collection_name, "UPDATE", new=record, old=serialize_doc(before))
    return record


def delete_document(collection_name: str, _id: str) -> bool:
    _ensure_db()
    oid = _object_id(_id)
    if oid is None:
        return False
    doc = db[collection_name].find_one_and_delete({"_id": oid})
    if doc is None:
        return False
    _publish(collection_name, "DELETE", old=serialize_doc(doc))
    return True


def delete_documents(collection_name: str, filter_dict: dict) -> int:
    # Bulk deletes are bookkeeping (sessions) and are not published.
    _ensure_db()
    return db[collection_name].delete_many(filter_dict).deleted_count


# Utility

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))  # convert ObjectId to string
    return d
