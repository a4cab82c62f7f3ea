"""Great-circle helpers for proximity detection."""

from __future__ import annotations

import math

from boop.domain.proximity.exceptions import InvalidLocation
from boop.domain.proximity.models import Coordinates

EARTH_RADIUS_M = 6_371_000

# Redis GEO cannot index latitudes beyond this (Web Mercator limit)
GEO_INDEX_MAX_LAT = 85.05112878


def distance(a: Coordinates, b: Coordinates) -> float:
    """Return the great-circle distance between two points in meters."""

    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push h a hair outside [0, 1] for antipodal inputs
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bearing(a: Coordinates, b: Coordinates) -> float:
    """Compass bearing from ``a`` to ``b`` in degrees, North=0, clockwise.

    Uses the planar delta-longitude/delta-latitude angle, which is what the
    mobile compass expects at neighbourhood scale. Identical points return 0.
    """

    delta_lat = b.latitude - a.latitude
    delta_lon = b.longitude - a.longitude
    if delta_lat == 0 and delta_lon == 0:
        return 0.0
    degrees = math.degrees(math.atan2(delta_lon, delta_lat))
    return (degrees + 360.0) % 360.0


def validate(latitude: object, longitude: object) -> Coordinates:
    """Return ``Coordinates`` for a WGS84 pair or raise ``InvalidLocation``."""

    if isinstance(latitude, bool) or isinstance(longitude, bool):
        raise InvalidLocation()
    try:
        lat = float(latitude)  # type: ignore[arg-type]
        lon = float(longitude)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InvalidLocation() from None
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidLocation()
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise InvalidLocation("Coordinates out of range")
    return Coordinates(latitude=lat, longitude=lon)


def geo_indexable(point: Coordinates) -> bool:
    return abs(point.latitude) <= GEO_INDEX_MAX_LAT
