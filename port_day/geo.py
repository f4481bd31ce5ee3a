"""Geospatial utilities (no external dependencies)."""

from __future__ import annotations

import math
import urllib.parse
from dataclasses import dataclass
from typing import Iterable

from port_day.models import Coordinate

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute Haversine distance in kilometers between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Distance in kilometers.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2, in degrees [0, 360)."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lambda = math.radians(lon2 - lon1)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    theta = math.degrees(math.atan2(y, x))
    # tiny negative angles round up to exactly 360.0; fold back into range
    return (theta + 360.0) % 360.0 % 360.0


def distance_km(a: Coordinate, b: Coordinate) -> float:
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def bearing(a: Coordinate, b: Coordinate) -> float:
    return bearing_deg(a.lat, a.lng, b.lat, b.lng)


def pointing_angle(bearing_to_target: float, heading: float | None) -> float:
    """Arrow rotation relative to the device's heading.

    A missing heading is treated as 0 so the arrow shows the absolute bearing (north-up).
    """

    return (bearing_to_target - (heading or 0.0)) % 360.0


def format_distance(km: float) -> str:
    """Format a distance for a badge: whole meters below 1 km, else one decimal km."""

    if km < 1.0:
        return f"{round(km * 1000)} m"
    return f"{km:.1f} km"


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """A lat/lng rectangle used to bound external place lookups."""

    south: float
    west: float
    north: float
    east: float

    def contains(self, coord: Coordinate) -> bool:
        return self.south <= coord.lat <= self.north and self.west <= coord.lng <= self.east

    def viewbox(self) -> str:
        """Nominatim ``viewbox`` parameter: ``x1,y1,x2,y2`` (lon/lat)."""

        return f"{self.west},{self.north},{self.east},{self.south}"


def bounding_box(coords: Iterable[Coordinate], pad_deg: float = 0.05) -> BoundingBox:
    """Smallest box around ``coords`` grown by ``pad_deg`` on every side.

    Raises:
        ValueError: If ``coords`` is empty.
    """

    pts = [c for c in coords if c.is_finite]
    if not pts:
        raise ValueError("cannot build a bounding box from zero coordinates")
    return BoundingBox(
        south=min(c.lat for c in pts) - pad_deg,
        west=min(c.lng for c in pts) - pad_deg,
        north=max(c.lat for c in pts) + pad_deg,
        east=max(c.lng for c in pts) + pad_deg,
    )


def directions_url(destination: Coordinate) -> str:
    """Google Maps deep link with directions to ``destination``."""

    params = {"api": "1", "destination": f"{destination.lat},{destination.lng}"}
    query = urllib.parse.urlencode(params, safe=",")
    return f"https://www.google.com/maps/dir/?{query}"
