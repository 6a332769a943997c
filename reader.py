"""
Collection reader.

Fetches a collection and normalizes every document into its Record model,
substituting declared defaults for missing display fields.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type

import structlog
from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import id_filter, to_str_id
from errors import CollectionEmptyError, RecordNotFoundError, RecordValidationError, StoreUnavailableError
from schemas import COLLECTION_MODELS, Record

logger = structlog.get_logger(__name__)


class ReadStatus(str, Enum):
    LOADED = "loaded"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class ReadResult:
    """Result of a collection fetch.

    EMPTY means the collection itself holds no documents. A LOADED result may
    still have no records when a filter excluded all of them.
    """
    collection: str
    status: ReadStatus
    records: List[Record] = field(default_factory=list)
    degraded: bool = False
    error: Optional[str] = None
    substitutions: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == ReadStatus.LOADED

    def raise_for_status(self) -> List[Record]:
        if self.status == ReadStatus.EMPTY:
            raise CollectionEmptyError(self.collection)
        if self.status == ReadStatus.FAILED:
            raise StoreUnavailableError(f"Failed to fetch {self.collection}: {self.error or 'Unknown error'}")
        return self.records


class CollectionReader:
    def __init__(self, db: Database, strict: bool = False):
        self.db = db
        self.strict = strict

    def model_for(self, collection: str) -> Type[Record]:
        return COLLECTION_MODELS.get(collection, Record)

    def fetch_all(
        self,
        collection: str,
        order_by: Optional[str] = None,
        descending: bool = True,
        where: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> ReadResult:
        coll = self.db[collection]

        try:
            first = coll.find_one({}, projection={"_id": 1})
        except PyMongoError as exc:
            logger.error("Collection fetch failed", collection=collection, error=str(exc))
            return ReadResult(collection, ReadStatus.FAILED, error=str(exc))

        if first is None:
            logger.info("Collection is empty or missing", collection=collection)
            return ReadResult(collection, ReadStatus.EMPTY)

        docs = None
        degraded = False
        if order_by:
            try:
                cursor = coll.find(where or {}).sort(order_by, DESCENDING if descending else ASCENDING)
                if limit:
                    cursor = cursor.limit(limit)
                docs = list(cursor)
            except PyMongoError as exc:
                degraded = True
                logger.warning(
                    "Ordered query failed, falling back to unordered query",
                    collection=collection,
                    order_by=order_by,
                    error=str(exc),
                )

        if docs is None:
            try:
                cursor = coll.find(where or {})
                if limit:
                    cursor = cursor.limit(limit)
                docs = list(cursor)
            except PyMongoError as exc:
                logger.error("Collection fetch failed", collection=collection, error=str(exc))
                return ReadResult(collection, ReadStatus.FAILED, degraded=degraded, error=str(exc))

        model = self.model_for(collection)
        records = []
        substitutions = {}
        for doc in docs:
            record, substituted = self.normalize(model, doc)
            records.append(record)
            if substituted:
                substitutions[record.id] = substituted

        logger.info(
            "Collection fetched",
            collection=collection,
            count=len(records),
            degraded=degraded,
            defaulted=len(substitutions),
        )
        return ReadResult(
            collection,
            ReadStatus.LOADED,
            records=records,
            degraded=degraded,
            substitutions=substitutions,
        )

    def fetch_one(self, collection: str, record_id: str) -> Record:
        try:
            doc = self.db[collection].find_one(id_filter(record_id))
        except PyMongoError as exc:
            logger.error("Record fetch failed", collection=collection, record_id=record_id, error=str(exc))
            raise StoreUnavailableError(f"Failed to fetch {collection} record {record_id}: {exc}")
        if doc is None:
            raise RecordNotFoundError(collection, record_id)
        record, _ = self.normalize(self.model_for(collection), doc)
        return record

    def normalize(self, model: Type[Record], doc: dict) -> Tuple[Record, List[str]]:
        """Map a raw document into ``model``, returning the record and the defaulted fields."""
        data = to_str_id(doc)
        substituted = []
        for name, info in model.model_fields.items():
            if name == "id":
                continue
            alias = info.alias or name
            value = data.get(alias)
            if value is None or value == "":
                data.pop(alias, None)
                substituted.append(alias)

        try:
            record = model.model_validate(data)
        except ValidationError as exc:
            errors = exc.errors()
            if self.strict:
                raise RecordValidationError(model.collection or "record", data.get("id", "?"), errors)
            bad = {str(err["loc"][0]) for err in errors if err.get("loc")}
            bad.discard("id")
            for key in bad:
                data.pop(key, None)
            substituted.extend(sorted(bad))
            logger.warning(
                "Malformed fields replaced with defaults",
                collection=model.collection,
                record_id=data.get("id"),
                fields=sorted(bad),
            )
            record = model.model_validate(data)

        return record, substituted
