"""Great-circle distance and birth-date arithmetic for proximity search."""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

from amora.storage.models import GeoPoint

EARTH_RADIUS_KM = 6371.0088
YEAR = timedelta(days=365.25)


def haversine_km(origin: GeoPoint, target: GeoPoint) -> float:
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(target.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(target.longitude - origin.longitude)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def bounding_box(origin: GeoPoint, radius_km: float) -> Tuple[float, float, float, float]:
    """Return ``(min_lat, max_lat, min_lon, max_lon)`` enclosing the search circle.

    When the circle touches a pole or crosses the antimeridian the longitude
    range widens to the whole globe; the exact haversine check still applies.
    """
    angular = radius_km / EARTH_RADIUS_KM
    delta_lat = math.degrees(angular)
    min_lat = origin.latitude - delta_lat
    max_lat = origin.latitude + delta_lat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0
    # Widest longitude reached by the circle, at the tangent meridians
    ratio = math.sin(angular) / math.cos(math.radians(origin.latitude))
    if ratio >= 1.0:
        return min_lat, max_lat, -180.0, 180.0
    delta_lon = math.degrees(math.asin(ratio))
    min_lon = origin.longitude - delta_lon
    max_lon = origin.longitude + delta_lon
    if min_lon < -180.0 or max_lon > 180.0:
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, min_lon, max_lon


def birth_datetime(birth_date: date) -> datetime:
    return datetime.combine(birth_date, time.min, tzinfo=timezone.utc)


def age_on(birth_date: date, now: datetime) -> int:
    """Whole years elapsed, counting a year as 365.25 days."""
    return math.floor((now - birth_datetime(birth_date)) / YEAR)


def birth_bounds(
    min_age: Optional[int], max_age: Optional[int], now: datetime
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Translate inclusive age bounds into birth-instant bounds.

    Returns ``(born_on_or_before, born_after)``: a candidate qualifies when
    its birth instant is ``<= born_on_or_before`` and ``> born_after``.
    """
    born_on_or_before = now - min_age * YEAR if min_age is not None else None
    born_after = now - (max_age + 1) * YEAR if max_age is not None else None
    return born_on_or_before, born_after


def within_birth_bounds(
    birth_date: date,
    born_on_or_before: Optional[datetime],
    born_after: Optional[datetime],
) -> bool:
    born = birth_datetime(birth_date)
    if born_on_or_before is not None and born > born_on_or_before:
        return False
    if born_after is not None and born <= born_after:
        return False
    return True
