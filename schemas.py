"""
Database Schemas for QuickCare Admin

Each Record model represents a collection in MongoDB. Stored documents use
camelCase keys (written by the mobile apps), so models are populated and
dumped by their camelCase aliases.

- DriverProfile -> driver_profiles
- UserProfile -> user_profiles
- EmergencyRequest -> emergency_requests
- AmbulanceBooking -> ambulance_bookings
- AmbulanceRequest -> ambulance_requests
- AdminAccount -> admins
- DriverLocation -> driver_locations
- MedicalInfo -> medical_info

Missing display fields fall back to the defaults declared here. Fields that
are not declared are kept as-is.
"""

from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce a stored timestamp into an aware datetime, or None.

    Accepts datetimes, {seconds, nanoseconds} / {_seconds, _nanoseconds} maps,
    ISO-8601 strings and epoch numbers (seconds or milliseconds).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
        try:
            return datetime.fromtimestamp(float(seconds) + float(nanos) / 1e9, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return None
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")


def to_geopoint(location: Any) -> Optional[GeoPoint]:
    """Extract coordinates from any of the stored location shapes."""
    if location is None:
        return None
    lat = lng = None
    if isinstance(location, (list, tuple)) and len(location) >= 2:
        lat, lng = location[0], location[1]
    elif isinstance(location, dict):
        for lat_key, lng_key in (("_lat", "_long"), ("latitude", "longitude"), ("lat", "lng")):
            if location.get(lat_key) is not None and location.get(lng_key) is not None:
                lat, lng = location[lat_key], location[lng_key]
                break
    if isinstance(lat, bool) or isinstance(lng, bool):
        return None
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None
    try:
        return GeoPoint(lat=lat, lng=lng)
    except ValueError:
        return None


def format_location(location: Any) -> str:
    """Human readable form of a stored location."""
    if location is None or location == "":
        return "Location not provided"
    point = to_geopoint(location)
    if point is not None:
        return f"{point.lat:.6f}, {point.lng:.6f}"
    if isinstance(location, str):
        return location
    if isinstance(location, dict):
        for key in ("address", "pickup"):
            if location.get(key):
                return str(location[key])
    return "Location format unknown"


class Record(BaseModel):
    """Base for documents read from a collection."""

    collection: ClassVar[str] = ""
    timestamp_fields: ClassVar[tuple] = ("created_at", "updated_at")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_timestamps(cls, value: Any, info) -> Any:
        if info.field_name in cls.timestamp_fields:
            return to_datetime(value)
        return value

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class DriverProfile(Record):
    collection: ClassVar[str] = "driver_profiles"

    full_name: str = "Unknown Driver"
    email: str = ""
    phone_number: str = ""
    license_number: str = ""
    is_verified: bool = False
    status: str = "pending"
    rating: float = 0
    total_trips: int = 0
    is_online: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserProfile(Record):
    collection: ClassVar[str] = "user_profiles"

    full_name: str = "Unknown User"
    emergency_contact: str = "No contact"
    emergency_email: str = "No email"
    blood_type: str = "Unknown"
    allergies: str = "None"
    medical_conditions: str = "None"
    medications: str = "None"
    is_active: bool = True
    medical_info: Optional[Dict[str, Any]] = None
    medical_info_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MedicalInfo(Record):
    collection: ClassVar[str] = "medical_info"

    blood_type: str = ""
    allergies: str = ""
    medications: str = ""
    medical_conditions: str = ""
    additional_notes: str = ""
    past_surgeries: str = ""


class EmergencyRequest(Record):
    collection: ClassVar[str] = "emergency_requests"
    timestamp_fields: ClassVar[tuple] = ("created_at", "accepted_at", "completed_at", "updated_at")

    user_id: Optional[str] = None
    user_name: str = "Unknown User"
    patient_name: str = "Anonymous"
    driver_id: Optional[str] = None
    driver_name: str = "Unassigned"
    location: Any = None
    location_description: str = "Unknown location"
    status: str = "pending"
    priority: str = "medium"
    type: str = "general"
    medical_info: Optional[Dict[str, Any]] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_timestamp(cls, data: Any) -> Any:
        # older request documents only carry "timestamp"
        if isinstance(data, dict) and data.get("createdAt") is None and data.get("timestamp") is not None:
            data = {**data, "createdAt": data["timestamp"]}
        return data


class AmbulanceBooking(Record):
    collection: ClassVar[str] = "ambulance_bookings"
    timestamp_fields: ClassVar[tuple] = ("created_at", "accepted_at", "completed_at", "updated_at")

    requester_id: str = "Unknown"
    patient_name: str = "Unknown Patient"
    patient_phone: str = "No phone"
    location: Any = None
    emergency_type: str = "Unknown"
    status: str = "pending"
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    injured_persons: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AmbulanceRequest(Record):
    collection: ClassVar[str] = "ambulance_requests"

    requester_name: str = "Unknown"
    contact_number: str = "N/A"
    request_type: str = "other"
    patient_count: int = 1
    urgency_level: str = "moderate"
    status: str = "pending"
    location: Any = Field(default_factory=lambda: {"pickup": "Not specified", "description": ""})
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AdminAccount(Record):
    collection: ClassVar[str] = "admins"

    email: str = ""
    uid: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DriverLocation(Record):
    collection: ClassVar[str] = "driver_locations"
    timestamp_fields: ClassVar[tuple] = ("timestamp", "updated_at")

    driver_id: Optional[str] = None
    location: Any = None
    is_online: bool = False
    speed: float = 0
    heading: float = 0
    driver_name: str = "Unknown Driver"
    phone_number: str = "N/A"
    status: str = "unknown"
    timestamp: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DocumentProbeResult(BaseModel):
    """Outcome of a driver document lookup. Never persisted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    url: str
    path: Optional[str] = None
    is_mock: bool = False
    error: Optional[str] = None
    tried: List[str] = Field(default_factory=list)


COLLECTION_MODELS: Dict[str, type] = {
    model.collection: model
    for model in (
        DriverProfile,
        UserProfile,
        MedicalInfo,
        EmergencyRequest,
        AmbulanceBooking,
        AmbulanceRequest,
        AdminAccount,
        DriverLocation,
    )
}
