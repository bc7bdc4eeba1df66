"""
MongoDB access for SkillSwap

A single pooled client is shared by every request. Route handlers receive
the database through the ``get_db`` dependency so tests can swap it out.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import ValidationError

logger = logging.getLogger(__name__)

client = MongoClient(DATABASE_URL)
db = client[DATABASE_NAME]


def get_db() -> Database:
    return db


def ensure_indexes(database: Database) -> None:
    """Create the indexes the swap and user queries rely on."""
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["swap"].create_index([("requester", ASCENDING), ("status", ASCENDING)])
    database["swap"].create_index([("recipient", ASCENDING), ("status", ASCENDING)])
    database["swap"].create_index([("status", ASCENDING)])
    database["swap"].create_index([("created_at", DESCENDING)])
    # one pending or accepted swap per pair of users
    database["swap"].create_index([("activePair", ASCENDING)], unique=True, sparse=True)
    logger.info("Indexes ensured on %s", database.name)


def oid(id_str: Any, label: str = "id") -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}")


def now() -> datetime:
    return datetime.now(timezone.utc)

