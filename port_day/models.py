"""Data models for the shore-day itinerary, user waypoints and search results."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import time
from enum import Enum
from typing import Final


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A WGS-84 position in decimal degrees."""

    lat: float
    lng: float

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.lat) and math.isfinite(self.lng)

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)


class ActivityKind(str, Enum):
    """Closed set of activity classifications (informational only)."""

    LOGISTICS = "logistics"
    TRANSPORT = "transport"
    SIGHTSEEING = "sightseeing"
    FOOD = "food"


class Lifecycle(str, Enum):
    """Live state of a scheduled activity."""

    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    ELAPSED_INCOMPLETE = "elapsed_incomplete"


@dataclass(frozen=True, slots=True)
class Activity:
    """One entry of the day's schedule.

    Attributes:
        activity_id: Stable unique id.
        title: Display title.
        start: Local start time of day.
        end: Local end time of day. Expected to be after ``start``.
        location_name: Where the activity takes place.
        coords: Primary coordinate.
        kind: Classification tag.
        completed: User-set completion flag. Never inferred from time.
        end_location_name: Optional distinct departure/arrival point name.
        end_coords: Optional coordinate of ``end_location_name``.
        critical: Presentation-only flag for must-not-miss entries.
        contingency_note: Presentation-only fallback advice.
    """

    activity_id: str
    title: str
    start: time
    end: time
    location_name: str
    coords: Coordinate
    kind: ActivityKind
    completed: bool = False
    end_location_name: str | None = None
    end_coords: Coordinate | None = None
    description: str = ""
    key_details: str = ""
    price_eur: float = 0.0
    critical: bool = False
    contingency_note: str | None = None
    maps_url: str | None = None
    ticket_url: str | None = None


@dataclass(frozen=True, slots=True)
class PointOfInterest:
    """A fixed, named point shipped with the itinerary."""

    name: str
    coords: Coordinate


@dataclass(frozen=True, slots=True)
class Waypoint:
    """A user-created point on the map."""

    waypoint_id: str
    name: str
    coords: Coordinate
    created_ms: int
    note: str | None = None


class SearchOrigin(str, Enum):
    """Where a search result came from. Declaration order is the ranking order."""

    SCHEDULE = "internal/schedule"
    POI = "internal/poi"
    MINE = "internal/mine"
    EXTERNAL = "external"


@dataclass(frozen=True, slots=True)
class SearchResult:
    """One row of the search list. ``ref`` is the activity or waypoint id it came from, if any."""

    label: str
    coords: Coordinate
    origin: SearchOrigin
    detail: str = ""
    ref: str | None = None


DEFAULT_TZ: Final[str] = "Europe/Rome"
NEAR_THRESHOLD_M: Final[float] = 300.0
DEFAULT_FOCUS_ZOOM: Final[int] = 16
DEFAULT_TICK_SECONDS: Final[float] = 60.0
