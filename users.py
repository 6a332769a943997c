"""User detail: profile, medical information and emergency history."""

from typing import List, Optional

import structlog
from pydantic import BaseModel, Field

from errors import AdminError
from filters import sort_recent
from reader import CollectionReader, ReadStatus
from schemas import EmergencyRequest, MedicalInfo, UserProfile

logger = structlog.get_logger(__name__)

MEDICAL_FIELDS = ("blood_type", "allergies", "medications", "medical_conditions")


class UserDetail(BaseModel):
    user: UserProfile
    medical_info: Optional[MedicalInfo] = None
    trips: List[EmergencyRequest] = Field(default_factory=list)


def resolve_medical_info(reader: CollectionReader, user: UserProfile) -> Optional[MedicalInfo]:
    """Medical info lives on the profile, in an embedded object, or in medical_info."""
    if any(name in user.model_fields_set for name in MEDICAL_FIELDS):
        data = {**user.model_dump(by_alias=True, exclude_unset=True, exclude={"id"}), "_id": user.id}
        info, _ = reader.normalize(MedicalInfo, data)
        return info
    if user.medical_info:
        info, _ = reader.normalize(MedicalInfo, {**user.medical_info, "_id": user.id})
        return info
    if user.medical_info_id:
        try:
            return reader.fetch_one("medical_info", user.medical_info_id)
        except AdminError as exc:
            logger.warning("Medical info lookup failed", user_id=user.id, medical_info_id=user.medical_info_id, error=exc.message)
    return None


def user_trips(reader: CollectionReader, user: UserProfile) -> List[EmergencyRequest]:
    result = reader.fetch_all("emergency_requests")
    if result.status == ReadStatus.FAILED:
        logger.warning("Could not load trips for user", user_id=user.id, error=result.error)
        return []
    match_name = "full_name" in user.model_fields_set
    trips = [
        trip
        for trip in result.records
        if trip.user_id == user.id
        or getattr(trip, "user", None) == user.id
        or (match_name and trip.user_name == user.full_name)
    ]
    return sort_recent(trips)


def load_user_detail(reader: CollectionReader, user_id: str) -> UserDetail:
    user = reader.fetch_one("user_profiles", user_id)
    detail = UserDetail(
        user=user,
        medical_info=resolve_medical_info(reader, user),
        trips=user_trips(reader, user),
    )
    logger.info("User detail loaded", user_id=user_id, trips=len(detail.trips))
    return detail
