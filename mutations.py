"""
Status mutations for driver profiles, emergency requests and bookings.

Writes are a single ``$set`` on the stored document; concurrent admins
overwrite each other (last write wins). A failed write leaves the caller's
in-memory records untouched and is not retried.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

import structlog
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import id_filter
from errors import InvalidTransitionError
from schemas import Record

logger = structlog.get_logger(__name__)

# approved <-> rejected stays open so a driver can be re-reviewed
DRIVER_TRANSITIONS: Mapping[str, FrozenSet[str]] = {
    "pending": frozenset({"approved", "rejected"}),
    "approved": frozenset({"rejected"}),
    "rejected": frozenset({"approved"}),
}

REQUEST_TRANSITIONS: Mapping[str, FrozenSet[str]] = {
    "pending": frozenset({"accepted", "cancelled"}),
    "accepted": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

LATTICES: Dict[str, Mapping[str, FrozenSet[str]]] = {
    "driver_profiles": DRIVER_TRANSITIONS,
    "emergency_requests": REQUEST_TRANSITIONS,
    "ambulance_bookings": REQUEST_TRANSITIONS,
    "ambulance_requests": REQUEST_TRANSITIONS,
}


def can_transition(lattice: Mapping[str, FrozenSet[str]], current: str, new: str) -> bool:
    return new in lattice.get(current, frozenset())


@dataclass
class MutationResult:
    ok: bool
    collection: str
    record_id: str
    status: str
    record: Optional[Record] = None
    error: Optional[str] = None


class MutationGateway:
    def __init__(self, db: Database, enforce: bool = True):
        self.db = db
        self.enforce = enforce

    def _current_status(self, collection: str, record_id: str, records: Optional[List[Record]]) -> Optional[str]:
        for record in records or []:
            if record.id == record_id:
                return getattr(record, "status", None)
        try:
            doc = self.db[collection].find_one(id_filter(record_id), projection={"status": 1})
        except PyMongoError as exc:
            logger.warning("Could not read current status", collection=collection, record_id=record_id, error=str(exc))
            return None
        if doc is None:
            return None
        return doc.get("status") or "pending"

    def transition_status(
        self,
        collection: str,
        record_id: str,
        new_status: str,
        extra_fields: Optional[Dict[str, Any]] = None,
        records: Optional[List[Record]] = None,
        current_status: Optional[str] = None,
    ) -> MutationResult:
        """Set ``new_status`` (plus ``extra_fields``) on one record.

        Raises InvalidTransitionError when enforcing and the move is outside
        the collection's status lattice. Store failures are logged and
        reported through the result; ``records`` is only updated on success.
        """
        lattice = LATTICES.get(collection)
        if self.enforce and lattice is not None:
            current = current_status or self._current_status(collection, record_id, records)
            if current is not None and not can_transition(lattice, current, new_status):
                raise InvalidTransitionError(collection, current, new_status)

        update = {"status": new_status, **(extra_fields or {}), "updatedAt": datetime.now(timezone.utc)}

        try:
            res = self.db[collection].update_one(id_filter(record_id), {"$set": update})
        except PyMongoError as exc:
            logger.error("Status update failed", collection=collection, record_id=record_id, status=new_status, error=str(exc))
            return MutationResult(False, collection, record_id, new_status, error=str(exc))

        if res.matched_count == 0:
            logger.error("Status update matched no record", collection=collection, record_id=record_id)
            return MutationResult(False, collection, record_id, new_status, error=f"{collection} record {record_id} not found")

        updated = None
        if records is not None:
            for i, record in enumerate(records):
                if record.id == record_id:
                    updated = record.model_copy(update=_field_updates(record, update))
                    records[i] = updated
                    break

        logger.info("Status updated", collection=collection, record_id=record_id, status=new_status)
        return MutationResult(True, collection, record_id, new_status, record=updated)

    def approve_driver(self, driver_id: str, records: Optional[List[Record]] = None) -> MutationResult:
        return self.transition_status("driver_profiles", driver_id, "approved", {"isVerified": True}, records)

    def reject_driver(self, driver_id: str, records: Optional[List[Record]] = None) -> MutationResult:
        return self.transition_status("driver_profiles", driver_id, "rejected", {"isVerified": False}, records)

    def accept_request(
        self,
        collection: str,
        request_id: str,
        driver_id: Optional[str] = None,
        driver_name: Optional[str] = None,
        records: Optional[List[Record]] = None,
    ) -> MutationResult:
        extra: Dict[str, Any] = {"acceptedAt": datetime.now(timezone.utc)}
        if driver_id:
            extra["driverId"] = driver_id
        if driver_name:
            extra["driverName"] = driver_name
        return self.transition_status(collection, request_id, "accepted", extra, records)

    def complete_request(self, collection: str, request_id: str, records: Optional[List[Record]] = None) -> MutationResult:
        return self.transition_status(collection, request_id, "completed", {"completedAt": datetime.now(timezone.utc)}, records)

    def cancel_request(
        self,
        collection: str,
        request_id: str,
        reason: Optional[str] = None,
        records: Optional[List[Record]] = None,
    ) -> MutationResult:
        extra = {"cancellationReason": reason} if reason else {}
        return self.transition_status(collection, request_id, "cancelled", extra, records)


def _field_updates(record: Record, update: Dict[str, Any]) -> Dict[str, Any]:
    """Translate stored camelCase keys back to the record's attribute names."""
    by_alias = {(info.alias or name): name for name, info in type(record).model_fields.items()}
    return {by_alias.get(key, key): value for key, value in update.items()}
