"""Distance, bearing and pointing arrow from the user to each activity."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from port_day.geo import bearing, distance_km, format_distance, pointing_angle
from port_day.models import NEAR_THRESHOLD_M, Activity, Coordinate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SpatialParams:
    """Parameters controlling spatial relations."""

    near_threshold_m: float = NEAR_THRESHOLD_M
    # A fix older than this is treated as unknown position. None keeps fixes forever.
    max_fix_age_seconds: float | None = 120.0


@dataclass(frozen=True, slots=True)
class SpatialRelation:
    """Where an activity lies as seen from the user."""

    activity_id: str
    distance_km: float
    bearing_deg: float
    pointing_deg: float
    near: bool

    @property
    def distance_text(self) -> str:
        return format_distance(self.distance_km)


def relate(
    activity: Activity,
    position: Coordinate,
    heading: float | None,
    params: SpatialParams = SpatialParams(),
) -> SpatialRelation:
    km = distance_km(position, activity.coords)
    b = bearing(position, activity.coords)
    return SpatialRelation(
        activity_id=activity.activity_id,
        distance_km=km,
        bearing_deg=b,
        pointing_deg=pointing_angle(b, heading),
        near=km * 1000.0 < params.near_threshold_m,
    )


def relate_schedule(
    activities: Sequence[Activity],
    position: Coordinate | None,
    heading: float | None,
    params: SpatialParams = SpatialParams(),
) -> dict[str, SpatialRelation]:
    """Relations for every non-completed activity.

    Returns an empty mapping when the position is unknown: absence means "unknown", never
    "already there".
    """

    if position is None or not position.is_finite:
        return {}
    return {a.activity_id: relate(a, position, heading, params) for a in activities if not a.completed}


def heading_from_orientation(alpha: float | None, webkit_compass_heading: float | None = None) -> float | None:
    """Compass heading from a raw device-orientation event.

    iOS reports ``webkitCompassHeading`` directly; elsewhere ``alpha`` counts
    counter-clockwise, so the heading is ``360 - alpha``. Returns None when neither is usable.
    """

    if webkit_compass_heading is not None and math.isfinite(webkit_compass_heading):
        return webkit_compass_heading % 360.0
    if alpha is None or not math.isfinite(alpha):
        return None
    if alpha == 0:
        return 0.0
    return (360.0 - alpha) % 360.0


class SpatialTracker:
    """Latest known-good position and heading.

    Non-finite readings are dropped and the previous good value is kept. A ``None`` position
    reading means the sensor lost the fix and clears it.
    """

    def __init__(self, params: SpatialParams = SpatialParams()) -> None:
        self._params = params
        self._position: Coordinate | None = None
        self._fix_at: datetime | None = None
        self._heading: float | None = None

    @property
    def params(self) -> SpatialParams:
        return self._params

    @property
    def heading(self) -> float | None:
        return self._heading

    def update_position(self, position: Coordinate | None, at: datetime) -> bool:
        """Record a reading. Returns True when the known position changed."""

        if position is None:
            changed = self._position is not None
            self._position = None
            self._fix_at = None
            return changed
        if not position.is_finite:
            logger.warning("dropping non-finite position reading: %s", position)
            return False
        changed = position != self._position
        self._position = position
        self._fix_at = at
        return changed

    def update_heading(self, heading: float | None) -> bool:
        if heading is not None and not math.isfinite(heading):
            logger.warning("dropping non-finite heading reading: %s", heading)
            return False
        value = None if heading is None else heading % 360.0
        changed = value != self._heading
        self._heading = value
        return changed

    def position(self, now: datetime | None = None) -> Coordinate | None:
        """Known position, or None if absent or older than ``max_fix_age_seconds``."""

        if self._position is None:
            return None
        max_age = self._params.max_fix_age_seconds
        if now is not None and max_age is not None and self._fix_at is not None:
            if (now - self._fix_at).total_seconds() > max_age:
                return None
        return self._position

    def relations(self, activities: Sequence[Activity], now: datetime | None = None) -> dict[str, SpatialRelation]:
        return relate_schedule(activities, self.position(now), self._heading, self._params)
