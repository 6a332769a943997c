"""Live driver positions joined with profiles and active trips."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from pydantic import BaseModel

from reader import CollectionReader, ReadStatus
from schemas import DriverLocation, DriverProfile, EmergencyRequest, GeoPoint, to_geopoint

logger = structlog.get_logger(__name__)

KM_PER_DEG_LAT = 110.574
KM_PER_DEG_LNG = 111.320


class ActiveTrip(BaseModel):
    trip_id: str
    patient_name: str
    patient_location: Any = None
    accepted_at: Optional[datetime] = None


class DriverPosition(BaseModel):
    driver_id: str
    driver_name: str
    phone_number: str
    status: str
    location: GeoPoint
    is_online: bool = False
    speed: float = 0
    heading: float = 0
    timestamp: Optional[datetime] = None
    availability: str = "offline"
    active_trip: Optional[ActiveTrip] = None


def active_trips_by_driver(trips: Iterable[EmergencyRequest]) -> Dict[str, ActiveTrip]:
    active = {}
    for trip in trips:
        if trip.status != "accepted" or not trip.driver_id:
            continue
        active[trip.driver_id] = ActiveTrip(
            trip_id=trip.id,
            patient_name=trip.user_name if "user_name" in trip.model_fields_set else "Unknown patient",
            patient_location=trip.location,
            accepted_at=trip.accepted_at,
        )
    return active


def build_positions(
    locations: Iterable[DriverLocation],
    profiles: Iterable[DriverProfile],
    trips: Iterable[EmergencyRequest],
) -> List[DriverPosition]:
    by_id = {p.id: p for p in profiles}
    active = active_trips_by_driver(trips)
    positions = []
    for loc in locations:
        point = to_geopoint(loc.location)
        if point is None:
            continue
        driver_id = loc.driver_id or loc.id
        profile = by_id.get(driver_id)
        name, phone, status = loc.driver_name, loc.phone_number, loc.status
        if profile is not None:
            if "full_name" in profile.model_fields_set:
                name = profile.full_name
            if "phone_number" in profile.model_fields_set:
                phone = profile.phone_number
            if "status" in profile.model_fields_set:
                status = profile.status
        trip = active.get(driver_id)
        if trip is not None:
            availability = "on_trip"
        elif loc.is_online:
            availability = "online"
        else:
            availability = "offline"
        positions.append(
            DriverPosition(
                driver_id=driver_id,
                driver_name=name,
                phone_number=phone,
                status=status,
                location=point,
                is_online=loc.is_online,
                speed=loc.speed,
                heading=loc.heading,
                timestamp=loc.timestamp,
                availability=availability,
                active_trip=trip,
            )
        )
    return positions


def map_center(positions: List[DriverPosition]) -> Optional[GeoPoint]:
    if not positions:
        return None
    lat = sum(p.location.lat for p in positions) / len(positions)
    lng = sum(p.location.lng for p in positions) / len(positions)
    return GeoPoint(lat=lat, lng=lng)


def nearby(positions: Iterable[DriverPosition], lat: float, lng: float, radius_km: float = 5.0) -> List[DriverPosition]:
    """Available drivers inside a bounding box around (lat, lng), closest first.

    Simple bounding box filter, not a great-circle distance.
    """
    dlat = radius_km / KM_PER_DEG_LAT
    dlng = radius_km / KM_PER_DEG_LNG
    found = [
        p
        for p in positions
        if p.availability == "online"
        and lat - dlat <= p.location.lat <= lat + dlat
        and lng - dlng <= p.location.lng <= lng + dlng
    ]

    def approx_km(p: DriverPosition) -> float:
        return (((p.location.lat - lat) * KM_PER_DEG_LAT) ** 2 + ((p.location.lng - lng) * KM_PER_DEG_LNG) ** 2) ** 0.5

    return sorted(found, key=approx_km)


def _records_or_empty(reader: CollectionReader, collection: str, **kwargs) -> list:
    result = reader.fetch_all(collection, **kwargs)
    if result.status == ReadStatus.FAILED:
        logger.warning("Tracking data unavailable", collection=collection, error=result.error)
    return result.records


def load_positions(reader: CollectionReader) -> List[DriverPosition]:
    locations = reader.fetch_all("driver_locations")
    if locations.status == ReadStatus.FAILED:
        locations.raise_for_status()
    profiles = _records_or_empty(reader, "driver_profiles")
    trips = _records_or_empty(reader, "emergency_requests", where={"status": "accepted"})
    positions = build_positions(locations.records, profiles, trips)
    logger.info("Driver positions loaded", drivers=len(positions))
    return positions
