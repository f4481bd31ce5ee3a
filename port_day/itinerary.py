"""Itinerary file loading and the in-memory schedule."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import date, time
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from port_day.geo import BoundingBox, bounding_box
from port_day.models import DEFAULT_TZ, Activity, ActivityKind, Coordinate, PointOfInterest
from port_day.timeutils import minutes_of_day, parse_hhmm, tzinfo_from_name

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("date", "activities")


class Schedule:
    """Activities ordered by start time. Only the completion flag ever changes."""

    def __init__(self, activities: Iterable[Activity]) -> None:
        items = tuple(activities)
        for prev, cur in zip(items, items[1:]):
            if minutes_of_day(cur.start) < minutes_of_day(prev.start):
                raise ValueError(
                    f"schedule is not ordered by start time: {cur.activity_id!r} ({cur.start:%H:%M}) "
                    f"comes after {prev.activity_id!r} ({prev.start:%H:%M})"
                )
        ids = [a.activity_id for a in items]
        if len(set(ids)) != len(ids):
            dupes = sorted({i for i in ids if ids.count(i) > 1})
            raise ValueError(f"duplicate activity ids: {dupes}")
        self._items = items

    @property
    def activities(self) -> tuple[Activity, ...]:
        return self._items

    def __iter__(self) -> Iterator[Activity]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def get(self, activity_id: str) -> Activity:
        for a in self._items:
            if a.activity_id == activity_id:
                return a
        raise KeyError(f"unknown activity id: {activity_id!r}")

    def set_completed(self, activity_id: str, completed: bool) -> Activity:
        updated = replace(self.get(activity_id), completed=completed)
        self._items = tuple(updated if a.activity_id == activity_id else a for a in self._items)
        return updated

    def toggle(self, activity_id: str) -> Activity:
        return self.set_completed(activity_id, not self.get(activity_id).completed)

    def apply_completion(self, mapping: Mapping[str, bool]) -> None:
        """Restore saved flags; ids no longer in the schedule are ignored."""

        self._items = tuple(
            replace(a, completed=bool(mapping[a.activity_id])) if a.activity_id in mapping else a
            for a in self._items
        )

    def completion_state(self) -> dict[str, bool]:
        return {a.activity_id: a.completed for a in self._items}


@dataclass(frozen=True, slots=True)
class PortCall:
    """One day ashore: schedule plus the fixed map content shipped with it."""

    name: str
    day: date
    tz_name: str
    schedule: Schedule
    fixed_points: tuple[PointOfInterest, ...]
    track: tuple[Coordinate, ...]
    all_aboard: time | None = None
    departure: time | None = None

    @property
    def region(self) -> BoundingBox:
        coords = [a.coords for a in self.schedule] + [p.coords for p in self.fixed_points] + list(self.track)
        return bounding_box(coords)

    @property
    def center(self) -> Coordinate:
        box = self.region
        return Coordinate(lat=(box.south + box.north) / 2.0, lng=(box.west + box.east) / 2.0)


def _coord(lat: Any, lng: Any) -> Coordinate:
    c = Coordinate(lat=float(lat), lng=float(lng))
    if not c.is_finite:
        raise ValueError(f"non-finite coordinate: {lat}, {lng}")
    return c


def _optional_time(value: Any) -> time | None:
    return parse_hhmm(value) if value else None


def activity_from_row(row: Mapping[str, Any]) -> Activity:
    """Build an Activity from one itinerary row.

    Raises:
        KeyError: If a required field is missing.
        ValueError: If a field has an invalid value.
    """

    end_coords = None
    if row.get("end_lat") is not None and row.get("end_lng") is not None:
        end_coords = _coord(row["end_lat"], row["end_lng"])
    return Activity(
        activity_id=str(row["id"]),
        title=str(row["title"]),
        start=parse_hhmm(row["start"]),
        end=parse_hhmm(row["end"]),
        location_name=str(row["location"]),
        coords=_coord(row["lat"], row["lng"]),
        kind=ActivityKind(row.get("type", "sightseeing")),
        completed=bool(row.get("completed", False)),
        end_location_name=row.get("end_location") or None,
        end_coords=end_coords,
        description=str(row.get("description", "") or ""),
        key_details=str(row.get("key_details", "") or ""),
        price_eur=float(row.get("price_eur", 0) or 0),
        critical=bool(row.get("critical", False)) or row.get("notes") == "CRITICAL",
        contingency_note=row.get("contingency") or None,
        maps_url=row.get("maps_url") or None,
        ticket_url=row.get("ticket_url") or None,
    )


def parse_port_call(raw: Mapping[str, Any]) -> PortCall:
    """Build a PortCall from an already-decoded itinerary document."""

    missing = [k for k in REQUIRED_KEYS if k not in raw]
    if missing:
        raise KeyError(f"itinerary is missing required keys {missing}; found {sorted(raw)}")

    tz_name = str(raw.get("timezone", DEFAULT_TZ))
    tzinfo_from_name(tz_name)
    try:
        day = date.fromisoformat(str(raw["date"]))
    except ValueError as exc:
        raise ValueError(f"cannot parse itinerary date: {raw['date']!r}, expected YYYY-MM-DD") from exc

    activities: list[Activity] = []
    skipped = 0
    for row in raw["activities"]:
        try:
            activities.append(activity_from_row(row))
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            skipped += 1
            logger.warning("skipping malformed activity %r: %s", row.get("id") if isinstance(row, dict) else row, exc)

    points: list[PointOfInterest] = []
    for row in raw.get("points", []):
        try:
            points.append(PointOfInterest(name=str(row["name"]), coords=_coord(row["lat"], row["lng"])))
        except (KeyError, ValueError, TypeError):
            skipped += 1

    track: list[Coordinate] = []
    for pair in raw.get("track", []):
        try:
            track.append(_coord(pair[0], pair[1]))
        except (IndexError, ValueError, TypeError):
            skipped += 1

    if skipped > 0:
        logger.warning("itinerary: %s malformed rows skipped", skipped)

    return PortCall(
        name=str(raw.get("name", "") or ""),
        day=day,
        tz_name=tz_name,
        schedule=Schedule(activities),
        fixed_points=tuple(points),
        track=tuple(track),
        all_aboard=_optional_time(raw.get("all_aboard")),
        departure=_optional_time(raw.get("departure")),
    )


def load_port_call(path: str | Path) -> PortCall:
    """Load an itinerary JSON file.

    Args:
        path: Path to the itinerary file.

    Returns:
        The parsed PortCall.
    """

    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"{p}: itinerary must be a JSON object, got {type(raw).__name__}")
    return parse_port_call(raw)
