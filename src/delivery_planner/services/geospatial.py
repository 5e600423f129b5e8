"""Geospatial helper functions."""

from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0

# Quadrant boundaries in degrees, clockwise from north.
_QUADRANTS = (
    (45.0, "north"),
    (135.0, "east"),
    (225.0, "south"),
    (315.0, "west"),
)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def bearing_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the initial bearing from (lat1, lon1) to (lat2, lon2)."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)
    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360) % 360


def area_tag_for_point(depot_lat: float, depot_lon: float, lat: float, lon: float) -> str:
    """Bucket a point into north/east/south/west by its bearing from the depot."""

    bearing = bearing_degrees(depot_lat, depot_lon, lat, lon)
    if bearing >= _QUADRANTS[-1][0]:
        return "north"
    for upper, tag in _QUADRANTS:
        if bearing < upper:
            return tag
    return "north"
