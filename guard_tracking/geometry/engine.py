"""
Geometry Engine — pure distance, offset and interpolation helpers.

Behavioral Contract:
- No function here raises on bad coordinates. Absent, non-numeric or
  non-finite inputs yield None ("unknown") so a malformed message degrades
  a distance instead of crashing the caller.
- "Unknown" is never coerced to 0: a point without coordinates is not near
  anything.
- Interpolation is a rendering aid only. The authoritative position is
  always the latest raw report.
"""

import math
from typing import (
    Any,
    Callable,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from guard_tracking.models.scope import CoordinateCheck, EventScope, GeofenceCheck
from guard_tracking.models.session import ProximityStats

EARTH_RADIUS_M = 6_371_000.0
METERS_PER_DEGREE_LAT = 111_320.0
DEFAULT_PROXIMITY_BANDS = (5000.0, 50000.0, 100000.0)
CARDINAL_DIRECTIONS = ["N", "NE", "E", "SE", "S", "SW", "W", "NW"]

LatLng = Tuple[float, float]
T = TypeVar("T")


def _as_float(value: Any) -> Optional[float]:
    """Parse a coordinate; None if absent, unparseable or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def has_coordinates(latitude: Any, longitude: Any) -> bool:
    """
    True if the pair is usable for distance work.
    (0, 0) is the devices' "no fix" placeholder and counts as absent.
    """
    lat = _as_float(latitude)
    lon = _as_float(longitude)
    if lat is None or lon is None:
        return False
    return not (lat == 0.0 and lon == 0.0)


def haversine_distance_meters(
    lat1: Any, lon1: Any, lat2: Any, lon2: Any
) -> Optional[float]:
    """Great-circle distance in metres on a sphere of mean Earth radius."""
    values = [_as_float(v) for v in (lat1, lon1, lat2, lon2)]
    if any(v is None for v in values):
        return None
    p1, l1, p2, l2 = (math.radians(v) for v in values)

    dphi = p2 - p1
    dlambda = l2 - l1
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(p1) * math.cos(p2) * math.sin(dlambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(max(0.0, 1 - a)))
    return EARTH_RADIUS_M * c


def validate_coordinates(latitude: Any, longitude: Any) -> CoordinateCheck:
    """Parse and range-check a coordinate pair."""
    lat = _as_float(latitude)
    lon = _as_float(longitude)
    if lat is None or lon is None:
        return CoordinateCheck(valid=False, error="Invalid coordinates")
    if not -90 <= lat <= 90:
        return CoordinateCheck(valid=False, error="Latitude must be between -90 and 90")
    if not -180 <= lon <= 180:
        return CoordinateCheck(valid=False, error="Longitude must be between -180 and 180")
    return CoordinateCheck(valid=True, latitude=lat, longitude=lon)


def check_geofence(
    latitude: Any,
    longitude: Any,
    scope: EventScope,
    default_radius_meters: float = 100.0,
) -> GeofenceCheck:
    """
    Test a point against the event's geofence circle.
    `within` stays None when either side has no coordinates, which is
    distinct from False (outside the circle).
    """
    radius = scope.geofence_radius_meters or default_radius_meters
    if not has_coordinates(scope.latitude, scope.longitude):
        return GeofenceCheck(radius_meters=radius)
    if not has_coordinates(latitude, longitude):
        return GeofenceCheck(radius_meters=radius)

    distance = haversine_distance_meters(
        latitude, longitude, scope.latitude, scope.longitude
    )
    if distance is None:
        return GeofenceCheck(radius_meters=radius)
    return GeofenceCheck(
        within=distance <= radius,
        distance_meters=distance,
        radius_meters=radius,
    )


def bearing_degrees(lat1: Any, lon1: Any, lat2: Any, lon2: Any) -> Optional[float]:
    """Initial bearing from point 1 to point 2, in [0, 360)."""
    values = [_as_float(v) for v in (lat1, lon1, lat2, lon2)]
    if any(v is None for v in values):
        return None
    p1, l1, p2, l2 = (math.radians(v) for v in values)
    y = math.sin(l2 - l1) * math.cos(p2)
    x = math.cos(p1) * math.sin(p2) - math.sin(p1) * math.cos(p2) * math.cos(l2 - l1)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def cardinal_direction(bearing: float) -> str:
    return CARDINAL_DIRECTIONS[int(round(bearing / 45)) % 8]


def format_distance(meters: Optional[float]) -> str:
    if meters is None:
        return "unknown"
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.2f}km"


def geographic_center(points: Iterable[LatLng]) -> Optional[LatLng]:
    """Centre of mass of points projected on the unit sphere."""
    x = y = z = 0.0
    count = 0
    for lat, lon in points:
        phi = math.radians(lat)
        lam = math.radians(lon)
        x += math.cos(phi) * math.cos(lam)
        y += math.cos(phi) * math.sin(lam)
        z += math.sin(phi)
        count += 1
    if count == 0:
        return None

    x, y, z = x / count, y / count, z / count
    lon = math.atan2(y, x)
    lat = math.atan2(z, math.sqrt(x * x + y * y))
    return (math.degrees(lat), math.degrees(lon))


def bounding_box(
    points: Sequence[LatLng], padding_meters: float = 0.0
) -> Optional[Tuple[LatLng, LatLng]]:
    """(southwest, northeast) corners, optionally padded by a distance in metres."""
    if not points:
        return None
    min_lat = min(p[0] for p in points)
    max_lat = max(p[0] for p in points)
    min_lon = min(p[1] for p in points)
    max_lon = max(p[1] for p in points)

    if padding_meters > 0:
        lat_pad = padding_meters / METERS_PER_DEGREE_LAT
        mid_lat = math.radians((min_lat + max_lat) / 2)
        lon_pad = padding_meters / (METERS_PER_DEGREE_LAT * max(math.cos(mid_lat), 1e-9))
        min_lat -= lat_pad
        max_lat += lat_pad
        min_lon -= lon_pad
        max_lon += lon_pad

    return ((min_lat, min_lon), (max_lat, max_lon))


# --- Marker de-overlap ---

def compute_co_location_offset(
    key: str,
    position: LatLng,
    known_positions: Iterable[Tuple[str, float, float]],
    tolerance: float = 1e-5,
    radius: float = 5e-5,
) -> LatLng:
    """
    Offset for a marker that shares its spot with other markers.

    `known_positions` is every tracked (key, lat, lng), agents and
    supervisors alike. Members of the collision set are spread evenly on a
    circle of `radius` degrees; the index is the discovery order, which is
    only stable within one render pass.
    """
    lat, lng = position
    colliding = [
        other_key
        for other_key, other_lat, other_lng in known_positions
        if abs(other_lat - lat) < tolerance and abs(other_lng - lng) < tolerance
    ]
    if len(colliding) <= 1 or key not in colliding:
        return (0.0, 0.0)

    index = colliding.index(key)
    angle = math.radians(360.0 / len(colliding) * index)
    return (radius * math.cos(angle), radius * math.sin(angle))


# --- Motion smoothing ---

def ease_in_out_cubic(progress: float) -> float:
    if progress < 0.5:
        return 4 * progress ** 3
    return 1 - (-2 * progress + 2) ** 3 / 2


def interpolate(
    start: LatLng,
    end: LatLng,
    elapsed_ms: float,
    duration_ms: float = 1000.0,
) -> LatLng:
    """Eased position between two points after `elapsed_ms` of a `duration_ms` move."""
    if duration_ms <= 0:
        progress = 1.0
    else:
        progress = min(max(elapsed_ms / duration_ms, 0.0), 1.0)
    if progress >= 1.0:
        return end
    if progress <= 0.0:
        return start

    eased = ease_in_out_cubic(progress)
    return (
        start[0] + (end[0] - start[0]) * eased,
        start[1] + (end[1] - start[1]) * eased,
    )


# --- Proximity over candidate lists ---

_LATITUDE_FIELDS = ("current_latitude", "currentLatitude", "latitude", "lat")
_LONGITUDE_FIELDS = ("current_longitude", "currentLongitude", "longitude", "lon", "lng")


def _first_present(candidate: Any, fields: Sequence[str]) -> Any:
    for name in fields:
        if isinstance(candidate, dict):
            value = candidate.get(name)
        else:
            value = getattr(candidate, name, None)
        if value not in (None, "", 0, 0.0):
            return value
    return None


def coordinates_of(candidate: Any) -> Optional[LatLng]:
    """
    Best-effort location of a candidate (model or dict).
    Tries the live fields before the profile fields.
    """
    lat = _first_present(candidate, _LATITUDE_FIELDS)
    lon = _first_present(candidate, _LONGITUDE_FIELDS)
    if not has_coordinates(lat, lon):
        return None
    return (float(lat), float(lon))


def _distance_to(
    center: Optional[LatLng],
    candidate: Any,
    locate: Callable[[Any], Optional[LatLng]],
) -> Optional[float]:
    if center is None:
        return None
    point = locate(candidate)
    if point is None:
        return None
    return haversine_distance_meters(center[0], center[1], point[0], point[1])


def rank_by_proximity(
    center: Optional[LatLng],
    candidates: Iterable[T],
    locate: Callable[[Any], Optional[LatLng]] = coordinates_of,
) -> List[Tuple[T, Optional[float]]]:
    """Pair candidates with their distance, nearest first, unknown last."""
    ranked = [(c, _distance_to(center, c, locate)) for c in candidates]
    ranked.sort(key=lambda pair: (pair[1] is None, pair[1] or 0.0))
    return ranked


def filter_by_proximity(
    center: Optional[LatLng],
    candidates: Iterable[T],
    radius_meters: float,
    locate: Callable[[Any], Optional[LatLng]] = coordinates_of,
) -> List[T]:
    """
    Keep candidates within the radius. Candidates without coordinates are
    excluded, unless none has coordinates, in which case nothing is filtered.
    """
    candidates = list(candidates)
    if center is None:
        return candidates
    distances = [_distance_to(center, c, locate) for c in candidates]
    if all(d is None for d in distances):
        return candidates
    return [
        c for c, d in zip(candidates, distances)
        if d is not None and d <= radius_meters
    ]


def proximity_stats(
    center: Optional[LatLng],
    candidates: Iterable[Any],
    bands: Sequence[float] = DEFAULT_PROXIMITY_BANDS,
    radius_meters: Optional[float] = None,
    locate: Callable[[Any], Optional[LatLng]] = coordinates_of,
) -> ProximityStats:
    """Count candidates per distance band around the centre."""
    distances = [_distance_to(center, c, locate) for c in candidates]
    known = [d for d in distances if d is not None]

    return ProximityStats(
        total_with_coordinates=len(known),
        without_coordinates=len(distances) - len(known),
        bands={band: sum(1 for d in known if d <= band) for band in bands},
        within_radius=(
            sum(1 for d in known if d <= radius_meters)
            if radius_meters is not None
            else None
        ),
    )
