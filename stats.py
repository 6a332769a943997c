"""
Dashboard statistics and reports.

Pure aggregation functions over normalized records, plus the StatAggregator
service that reads the collections they need.
"""

from datetime import date, datetime, time, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import structlog
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from reader import CollectionReader, ReadStatus
from schemas import Record, to_datetime

logger = structlog.get_logger(__name__)

DASHBOARD_COLLECTIONS = (
    "emergency_requests",
    "ambulance_bookings",
    "driver_profiles",
    "user_profiles",
    "admins",
)


def _value(record: Any, key: str) -> Any:
    if isinstance(record, dict):
        return record.get(key, record.get(to_camel(key)))
    return getattr(record, key, None)


def count_by(records: Iterable[Any], key: Union[str, Callable[[Any], Any]]) -> List[Tuple[str, int]]:
    """Group records by ``key`` and count them, in first-seen order of the groups."""
    get = key if callable(key) else (lambda r: _value(r, key))
    counts: Dict[str, int] = {}
    for record in records:
        label = get(record)
        label = "unknown" if label is None else str(label)
        counts[label] = counts.get(label, 0) + 1
    return list(counts.items())


def count_where(records: Iterable[Any], predicate: Callable[[Any], bool]) -> int:
    return sum(1 for record in records if predicate(record))


def record_day(record: Any, field: str = "created_at") -> Optional[date]:
    value = _value(record, field)
    moment = to_datetime(value)
    return moment.date() if moment else None


def daily_series(series: Dict[str, Sequence[Any]], field: str = "created_at") -> List[Dict[str, Any]]:
    """Bucket each series by calendar day of ``field``.

    Returns one row per day, sorted ascending, with a count for every series.
    Records without a usable timestamp are left out.
    """
    buckets: Dict[str, Dict[str, int]] = {}
    skipped = 0
    for name, records in series.items():
        for record in records:
            day = record_day(record, field)
            if day is None:
                skipped += 1
                continue
            row = buckets.setdefault(day.isoformat(), {n: 0 for n in series})
            row[name] += 1

    if skipped:
        logger.debug("Records without timestamp left out of daily series", skipped=skipped)

    return [{"date": day, **counts} for day, counts in sorted(buckets.items())]


def _labelled(pairs: List[Tuple[str, int]]) -> List["LabelCount"]:
    return [LabelCount(name=label[:1].upper() + label[1:], value=count) for label, count in pairs]


class LabelCount(BaseModel):
    name: str
    value: int


class DashboardStats(BaseModel):
    total_emergencies: int = 0
    active_bookings: int = 0
    total_drivers: int = 0
    online_drivers: int = 0
    pending_drivers: int = 0
    total_users: int = 0
    total_admins: int = 0
    totals: Dict[str, int] = Field(default_factory=dict)
    driver_status: List[LabelCount] = Field(default_factory=list)
    emergency_status: List[LabelCount] = Field(default_factory=list)


def compute_stats(collections: Dict[str, Sequence[Any]]) -> DashboardStats:
    emergencies = collections.get("emergency_requests", [])
    bookings = collections.get("ambulance_bookings", [])
    drivers = collections.get("driver_profiles", [])

    return DashboardStats(
        total_emergencies=len(emergencies),
        active_bookings=count_where(bookings, lambda b: _value(b, "status") in ("active", "pending")),
        total_drivers=len(drivers),
        online_drivers=count_where(drivers, lambda d: bool(_value(d, "is_online"))),
        pending_drivers=count_where(drivers, lambda d: _value(d, "status") == "pending"),
        total_users=len(collections.get("user_profiles", [])),
        total_admins=len(collections.get("admins", [])),
        totals={name: len(records) for name, records in collections.items()},
        driver_status=_labelled(count_by(drivers, "status")),
        emergency_status=_labelled(count_by(emergencies, "status")),
    )


class Report(BaseModel):
    date_from: datetime
    date_to: datetime
    total_emergencies: int = 0
    total_ambulance_requests: int = 0
    active_cases: int = 0
    emergency_status: List[LabelCount] = Field(default_factory=list)
    ambulance_types: List[LabelCount] = Field(default_factory=list)
    emergency_priority: List[LabelCount] = Field(default_factory=list)
    daily: List[Dict[str, Any]] = Field(default_factory=list)
    message: Optional[str] = None


def _as_aware(moment: Union[date, datetime], end: bool = False) -> datetime:
    if not isinstance(moment, datetime):
        moment = datetime.combine(moment, time.max if end else time.min)
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def in_range(records: Iterable[Any], date_from: datetime, date_to: datetime, field: str = "created_at") -> List[Any]:
    selected = []
    for record in records:
        moment = to_datetime(_value(record, field))
        if moment is not None and date_from <= moment <= date_to:
            selected.append(record)
    return selected


def build_report(
    emergencies: Sequence[Any],
    ambulance_requests: Sequence[Any],
    date_from: Union[date, datetime],
    date_to: Union[date, datetime],
) -> Report:
    start = _as_aware(date_from)
    end = _as_aware(date_to, end=True)
    emergencies = in_range(emergencies, start, end)
    ambulance_requests = in_range(ambulance_requests, start, end)

    report = Report(
        date_from=start,
        date_to=end,
        total_emergencies=len(emergencies),
        total_ambulance_requests=len(ambulance_requests),
        active_cases=count_where(emergencies, lambda e: _value(e, "status") == "active")
        + count_where(ambulance_requests, lambda r: _value(r, "status") == "active"),
        emergency_status=_labelled(count_by(emergencies, "status")),
        ambulance_types=_labelled(count_by(ambulance_requests, "request_type")),
        emergency_priority=_labelled(count_by(emergencies, "priority")),
        daily=daily_series({"emergencies": emergencies, "ambulance": ambulance_requests}),
    )
    if not emergencies and not ambulance_requests:
        report.message = "No data available for the selected date range"
    return report


class StatAggregator:
    def __init__(self, reader: CollectionReader):
        self.reader = reader

    def _records(self, collection: str) -> List[Record]:
        result = self.reader.fetch_all(collection)
        if result.status == ReadStatus.FAILED:
            result.raise_for_status()
        return result.records

    def dashboard(self) -> DashboardStats:
        collections = {name: self._records(name) for name in DASHBOARD_COLLECTIONS}
        stats = compute_stats(collections)
        logger.info("Dashboard stats computed", **stats.totals)
        return stats

    def report(self, date_from: Union[date, datetime], date_to: Union[date, datetime]) -> Report:
        emergencies = self._records("emergency_requests")
        ambulance_requests = self._records("ambulance_requests")
        if not emergencies and not ambulance_requests:
            logger.info("No report data in the database")
            return Report(
                date_from=_as_aware(date_from),
                date_to=_as_aware(date_to, end=True),
                message="No data available in the database. Please add some emergency requests and ambulance requests.",
            )
        return build_report(emergencies, ambulance_requests, date_from, date_to)
