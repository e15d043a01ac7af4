# utils/geo_utils.py

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import math
from firebase_functions import logger

from .errors import NotFound, UnhandledFailure

EARTH_RADIUS_KM = 6371.0

# Location attribute names checked in order when a facility location is a mapping.
# Firestore GeoPoints serialise as _latitude/_longitude.
LOCATION_FIELD_PAIRS = (
    ("_latitude", "_longitude"),
    ("latitude", "longitude"),
)


@dataclass(frozen=True)
class Coordinate:
    """A point on the globe in degrees."""
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Facility:
    """An emergency-care facility as stored in the facilities collection."""
    id: str
    name: str
    location: Coordinate

    def to_response(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": {
                "_latitude": self.location.latitude,
                "_longitude": self.location.longitude,
            },
        }


@dataclass(frozen=True)
class ResolutionResult:
    facility: Facility
    distance_km: float


def haversine_distance(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in kilometres."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    delta_phi = math.radians(b.latitude - a.latitude)
    delta_lambda = math.radians(b.longitude - a.longitude)

    a_hav = (
        math.sin(delta_phi / 2) * math.sin(delta_phi / 2)
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) * math.sin(delta_lambda / 2)
    )
    c = 2 * math.atan2(math.sqrt(a_hav), math.sqrt(1 - a_hav))

    return EARTH_RADIUS_KM * c


def _as_degrees(value: Any) -> Optional[float]:
    # bool is an int subclass, never a coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def extract_coordinate(location: Any) -> Optional[Coordinate]:
    """
    Read a Coordinate from a stored location value.

    Accepts a GeoPoint-like object (latitude/longitude attributes) or a mapping
    using one of LOCATION_FIELD_PAIRS. Returns None when either component is
    missing or not a finite number.
    """
    if location is None:
        return None

    if isinstance(location, dict):
        for lat_field, lng_field in LOCATION_FIELD_PAIRS:
            if lat_field in location or lng_field in location:
                lat = _as_degrees(location.get(lat_field))
                lng = _as_degrees(location.get(lng_field))
                if lat is not None and lng is not None:
                    return Coordinate(lat, lng)
        return None

    lat = _as_degrees(getattr(location, "latitude", None))
    lng = _as_degrees(getattr(location, "longitude", None))
    if lat is None or lng is None:
        return None
    return Coordinate(lat, lng)


def facility_from_document(doc) -> Optional[Facility]:
    """Convert a facility DocumentSnapshot, or None if its location is unusable."""
    data = doc.to_dict() or {}
    coordinate = extract_coordinate(data.get("location"))
    if coordinate is None:
        logger.warn(f"⚠️ Skipping facility {doc.id}: location is missing or not numeric")
        return None
    return Facility(id=doc.id, name=str(data.get("name") or ""), location=coordinate)


def load_facilities(db, collection: str, timeout: Optional[float] = None) -> List[Optional[Facility]]:
    """
    Fetch every facility record from Firestore.

    Unusable records are kept as None entries so the resolver can tell an empty
    collection apart from one with nothing resolvable.
    """
    try:
        snapshot = db.collection(collection).get(timeout=timeout)
    except Exception as e:
        logger.error(f"Error getting hospitals: {str(e)}")
        raise UnhandledFailure("Failed to retrieve hospitals.") from e

    return [facility_from_document(doc) for doc in snapshot]


def find_nearest_facility(target: Coordinate, facilities: Sequence[Optional[Facility]]) -> ResolutionResult:
    """
    Linear scan for the facility closest to ``target``.

    Ties keep the first facility encountered. None entries (records whose
    location could not be read) are skipped.

    Raises:
        NotFound: the sequence is empty or holds no usable facility.
    """
    if not facilities:
        raise NotFound("No hospitals found")

    nearest: Optional[Facility] = None
    min_distance = math.inf

    for facility in facilities:
        if facility is None:
            continue
        distance = haversine_distance(target, facility.location)
        if distance < min_distance:
            min_distance = distance
            nearest = facility

    if nearest is None:
        raise NotFound("No nearest hospital found")

    return ResolutionResult(facility=nearest, distance_km=min_distance)

