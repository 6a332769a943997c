"""
MongoDB access helpers.

The client and database handles are created by the application root and
passed to every component that needs them.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Tuple, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import Settings


def connect(settings: Settings) -> Tuple[MongoClient, Database]:
    client = MongoClient(settings.DATABASE_URL, tz_aware=True)
    return client, client[settings.DATABASE_NAME]


def id_filter(_id: str) -> Dict[str, Any]:
    """Match a document whether its _id was stored as an ObjectId or a plain string."""
    if ObjectId.is_valid(_id):
        return {"_id": {"$in": [ObjectId(_id), _id]}}
    return {"_id": _id}


def clean_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: clean_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [clean_value(v) for v in value]
    return value


def to_str_id(doc):
    if doc is None:
        return None
    d = clean_value(dict(doc))
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(db: Database, collection: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True, exclude={"id"})
    else:
        data = dict(data)
    now = datetime.now(timezone.utc)
    data.setdefault("createdAt", now)
    data.setdefault("updatedAt", now)
    result = db[collection].insert_one(data)
    return str(result.inserted_id)
