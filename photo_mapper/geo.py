"""
Coordinate validation and great-circle distance.
"""
import math
import numbers
from typing import Any, Optional

from . import config
from .exceptions import CoordinateValidationError
from .models import Coordinates


def _as_finite(value: Any) -> Optional[float]:
    """Returns value as a float if it is a finite real number, else None."""
    # bool is an int subclass; True is not a latitude
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    f = float(value)
    if not math.isfinite(f):
        return None
    return f


def validate_coordinates(lat: Any, lng: Any, alt: Any = None) -> Coordinates:
    """
    Validates and normalizes a coordinate triple.

    Raises CoordinateValidationError when latitude or longitude is missing,
    not a finite number, or out of range. An unusable altitude is dropped
    rather than rejected.
    """
    if lat is None or lng is None:
        raise CoordinateValidationError("missing coordinates")

    lat_f = _as_finite(lat)
    if lat_f is None:
        raise CoordinateValidationError(f"latitude is not a finite number: {lat!r}")
    lng_f = _as_finite(lng)
    if lng_f is None:
        raise CoordinateValidationError(f"longitude is not a finite number: {lng!r}")

    if not -90.0 <= lat_f <= 90.0:
        raise CoordinateValidationError(f"latitude out of range: {lat_f}")
    if not -180.0 <= lng_f <= 180.0:
        raise CoordinateValidationError(f"longitude out of range: {lng_f}")

    return Coordinates(latitude=lat_f, longitude=lng_f, altitude=_as_finite(alt))


def is_valid_coordinate(lat: Any, lng: Any) -> bool:
    try:
        validate_coordinates(lat, lng)
    except CoordinateValidationError:
        return False
    return True


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Haversine distance in meters.
    Callers must pass validated coordinates; NaN inputs yield NaN.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Rounding can push a a hair above 1 for antipodal points
    if a > 1.0:
        a = 1.0
    return 2 * config.EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


def latitude_band(lat: float, radius_meters: float) -> tuple[float, float]:
    """
    Returns the (south, north) latitude band that contains every point within
    radius_meters of a point at lat. Great-circle distance is never shorter
    than the meridian distance, so the band is a safe prefilter.
    """
    delta = math.degrees(radius_meters / config.EARTH_RADIUS_METERS) + 1e-9
    return max(-90.0, lat - delta), min(90.0, lat + delta)
