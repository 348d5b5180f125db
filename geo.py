import math
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

import config
from models import Location

EARTH_RADIUS_KM = 6371.0

Point = Union[Location, Tuple[float, float]]


def _coords(point: Point) -> Tuple[float, float]:
    if isinstance(point, Location):
        return point.latitude, point.longitude
    lat, lon = point
    return float(lat), float(lon)


def distance_km(origin: Point, destination: Point) -> float:
    """Great-circle (haversine) distance in kilometres between two points given in degrees."""
    lat1, lon1 = _coords(origin)
    lat2, lon2 = _coords(destination)
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def estimate_eta_minutes(distance: Optional[float], avg_speed_kmh: Optional[float] = None) -> int:
    """Minutes needed to cover distance at avg_speed_kmh, rounded up.

    A missing, non-finite, zero or negative distance means the distance is unknown and the
    fallback ETA is returned instead.
    """
    if avg_speed_kmh is None:
        avg_speed_kmh = config.AVG_SPEED_KMH
    if distance is None or not math.isfinite(distance) or distance <= 0 or avg_speed_kmh <= 0:
        return config.ETA_FALLBACK_MINUTES
    return math.ceil(distance / avg_speed_kmh * 60)


def eta_between(origin: Point, destination: Point, avg_speed_kmh: Optional[float] = None) -> Tuple[float, int]:
    distance = distance_km(origin, destination)
    return distance, estimate_eta_minutes(distance, avg_speed_kmh)


def estimated_arrival(now: datetime, minutes: int) -> datetime:
    return now + timedelta(minutes=minutes)
