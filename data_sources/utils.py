"""
Shared utilities for CareMatch data sources
Consolidates the geo-distance primitive and coordinate checks
"""

import math
from typing import List, Dict, Optional

from data_sources.error_handling import InvalidCoordinatesError

EARTH_RADIUS_MILES = 3959


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in miles using the Haversine formula.

    Args:
        lat1, lon1: First point coordinates
        lat2, lon2: Second point coordinates

    Returns:
        Distance in miles
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = math.sin(delta_phi/2)**2 + math.cos(phi1) * \
        math.cos(phi2) * math.sin(delta_lambda/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))

    return EARTH_RADIUS_MILES * c


def validate_coordinates(lat: float, lon: float) -> bool:
    """
    Validate that coordinates are within valid ranges.

    Args:
        lat, lon: Coordinates to validate

    Returns:
        True if coordinates are valid
    """
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


def require_coordinates(lat: float, lon: float, label: str = "point") -> None:
    """Raise InvalidCoordinatesError unless (lat, lon) is a valid point."""
    if not validate_coordinates(lat, lon):
        raise InvalidCoordinatesError(
            f"Invalid coordinates for {label}: ({lat}, {lon})", lat=lat, lon=lon
        )


def find_nearest(items: List, lat: float, lon: float,
                 max_distance_miles: Optional[float] = None) -> List[Dict]:
    """
    Find items nearest to a location.

    Args:
        items: Objects exposing ``lat`` and ``lon`` attributes
        lat, lon: Center coordinates
        max_distance_miles: Optional maximum distance filter

    Returns:
        List of {"item", "distance_miles"} dicts sorted by distance
    """
    with_distance = []

    for item in items:
        distance = haversine_miles(lat, lon, item.lat, item.lon)
        if max_distance_miles is None or distance <= max_distance_miles:
            with_distance.append({"item": item, "distance_miles": distance})

    with_distance.sort(key=lambda x: x["distance_miles"])
    return with_distance
