"""
Database Helper Functions

MongoDB helpers shared by every route. Documents come back as plain dicts with
the Mongo `_id` replaced by a string `id`.
"""

import logging
from pymongo import ASCENDING, MongoClient, ReturnDocument
from bson import ObjectId
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List
from pydantic import BaseModel

import config

logger = logging.getLogger(__name__)

# Collections
CURRENCY_ACCOUNTS = "currency_accounts"
CURRENCY_TXNS = "currency_txns"
QUESTIONS = "questions"
BET_MODE_QUESTIONS = "bet_mode_questions"
CHALLENGES = "challenges"
TIME_ATTEMPTS = "time_attempts"
LEADERBOARD = "leaderboard"
BET_MODE_GAMES = "bet_mode_games"
WEEKLY_POOLS = "weekly_pools"
LOTTERY_TICKETS = "lottery_tickets"
QT_TRANSACTIONS = "qt_transactions"


def ensure_indexes(target) -> None:
    """Unique keys the service relies on for its one-document-per-key rules"""
    target[CURRENCY_ACCOUNTS].create_index("fid", unique=True)
    target[LOTTERY_TICKETS].create_index([("week_id", ASCENDING), ("fid", ASCENDING)], unique=True)
    target[LEADERBOARD].create_index([("fid", ASCENDING), ("mode", ASCENDING), ("quiz_id", ASCENDING)])
    # only deposits carry a tx_ref; withdrawals leave it unset
    target[QT_TRANSACTIONS].create_index(
        "tx_ref", unique=True, partialFilterExpression={"tx_ref": {"$exists": True}}
    )


_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]
    ensure_indexes(db)
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set; database routes will answer 503")


class DatabaseUnavailable(Exception):
    pass


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """pymongo hands back naive datetimes unless the client is tz_aware; treat those as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def collection(name: str):
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db[name]

# Helper: ensure dict

def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_none=True)
    return data.copy()

# Helper: convert str id to ObjectId

def _oid(id_val: Union[str, ObjectId]) -> ObjectId:
    return id_val if isinstance(id_val, ObjectId) else ObjectId(id_val)


def _query(id_or_filter: Union[str, ObjectId, dict]) -> dict:
    if isinstance(id_or_filter, dict):
        return id_or_filter
    return {"_id": _oid(id_or_filter)}


def _out(doc: Optional[dict]) -> Optional[Dict[str, Any]]:
    if not doc:
        return None
    if "_id" in doc:
        # documents with their own `id` field (bet mode questions) keep it
        doc.setdefault('id', str(doc.pop('_id')))
    return doc


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a single document with timestamp"""
    data_dict = _to_dict(data)
    now = now_utc()
    data_dict.setdefault('created_at', now)
    data_dict['updated_at'] = now

    result = collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def create_documents(collection_name: str, items: List[Union[BaseModel, dict]]) -> int:
    now = now_utc()
    docs = []
    for item in items:
        d = _to_dict(item)
        d.setdefault('created_at', now)
        d['updated_at'] = now
        docs.append(d)
    if not docs:
        return 0
    result = collection(collection_name).insert_many(docs)
    return len(result.inserted_ids)


def get_documents(collection_name: str, filter_dict: dict = None, sort: list = None):
    """Get documents from collection"""
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    return [_out(d) for d in cursor]


def find_one(collection_name: str, filter_dict: dict) -> Optional[Dict[str, Any]]:
    return _out(collection(collection_name).find_one(filter_dict))


def update_document(
    collection_name: str,
    id_or_filter: Union[str, ObjectId, dict],
    update_dict: dict,
    upsert: bool = False,
    on_insert: dict = None,
    unset: List[str] = None,
) -> Optional[Dict[str, Any]]:
    """Update a document and return the updated version"""
    update = {"$set": {**update_dict, "updated_at": now_utc()}}
    if upsert:
        update["$setOnInsert"] = {"created_at": now_utc(), **(on_insert or {})}
    if unset:
        update["$unset"] = {field: "" for field in unset}
    doc = collection(collection_name).find_one_and_update(
        _query(id_or_filter), update, upsert=upsert, return_document=ReturnDocument.AFTER
    )
    return _out(doc)


def increment_field(
    collection_name: str,
    id_or_filter: Union[str, ObjectId, dict],
    inc_dict: dict,
    set_dict: dict = None,
    upsert: bool = False,
    on_insert: dict = None,
) -> Optional[Dict[str, Any]]:
    """$inc fields atomically. Returns None when nothing matched, so a guard
    placed in the filter (e.g. ``{"balance": {"$gte": n}}``) doubles as the check."""
    update = {"$inc": inc_dict, "$set": {**(set_dict or {}), "updated_at": now_utc()}}
    if upsert:
        update["$setOnInsert"] = {"created_at": now_utc(), **(on_insert or {})}
    doc = collection(collection_name).find_one_and_update(
        _query(id_or_filter), update, upsert=upsert, return_document=ReturnDocument.AFTER
    )
    return _out(doc)


def sample(collection_name: str, match: dict, size: int) -> List[Dict[str, Any]]:
    """Random documents via $sample, without the Mongo id"""
    pipeline = [
        {"$match": match},
        {"$sample": {"size": size}},
        {"$project": {"_id": 0}},
    ]
    return list(collection(collection_name).aggregate(pipeline))


def push_item(collection_name: str, id_or_filter: Union[str, ObjectId, dict], field: str, item: dict) -> bool:
    """Append to an array field; True when a document matched"""
    result = collection(collection_name).update_one(
        _query(id_or_filter), {"$push": {field: item}, "$set": {"updated_at": now_utc()}}
    )
    return result.matched_count > 0
