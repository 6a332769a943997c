"""In-memory search, status and time-frame filters for the list views."""

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional, Sequence

from schemas import to_datetime

STATUS_ALIASES = {"in_progress": "accepted"}

TIME_FRAMES = {
    "today": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


def search_records(records: Iterable[Any], term: Optional[str], fields: Sequence[str]) -> List[Any]:
    if not term:
        return list(records)
    needle = term.lower()
    matched = []
    for record in records:
        for name in fields:
            value = getattr(record, name, None)
            if value is not None and needle in str(value).lower():
                matched.append(record)
                break
    return matched


def filter_status(records: Iterable[Any], status: Optional[str]) -> List[Any]:
    if not status or status == "all":
        return list(records)
    wanted = {status, STATUS_ALIASES.get(status, status)}
    return [r for r in records if getattr(r, "status", None) in wanted]


def filter_time_frame(
    records: Iterable[Any],
    frame: Optional[str],
    field: str = "created_at",
    now: Optional[datetime] = None,
) -> List[Any]:
    """Keep records younger than the frame. Records without a usable date are kept."""
    window = TIME_FRAMES.get(frame or "all")
    if window is None:
        return list(records)
    now = now or datetime.now(timezone.utc)
    kept = []
    for record in records:
        moment = to_datetime(getattr(record, field, None))
        if moment is None or now - moment < window:
            kept.append(record)
    return kept


def sort_recent(records: Iterable[Any], field: str = "created_at") -> List[Any]:
    """Newest first; undated records go last."""
    oldest = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(records, key=lambda r: to_datetime(getattr(r, field, None)) or oldest, reverse=True)
