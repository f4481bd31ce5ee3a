"""
Shared pytest fixtures for port_day tests.
"""

from __future__ import annotations

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from port_day.geo import BoundingBox
from port_day.itinerary import PortCall, Schedule
from port_day.models import Activity, ActivityKind, Coordinate, PointOfInterest
from port_day.search import ExternalPlace, PlaceLookupError
from port_day.surface import RecordingSurface

ROME = ZoneInfo("Europe/Rome")
DAY = date(2025, 5, 14)

DUOMO = Coordinate(lat=43.7731, lng=11.2560)
MERCATO = Coordinate(lat=43.7763, lng=11.2534)
SMN = Coordinate(lat=43.7764, lng=11.2480)
PONTE_VECCHIO = Coordinate(lat=43.7680, lng=11.2531)


class FakeLookup:
    """External place lookup double: records queries, returns canned places or raises."""

    def __init__(self, places=None, error=None):
        self.places = list(places or [])
        self.error = error
        self.calls = []

    def search(self, text, region):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.places)


@pytest.fixture
def at():
    """Build an aware datetime on the itinerary day (or ``day``) from "HH:MM[:SS]"."""

    def _at(hhmm, day=DAY):
        parts = [int(p) for p in hhmm.split(":")]
        return datetime.combine(day, time(*parts), tzinfo=ROME)

    return _at


@pytest.fixture
def make_activity():
    """Factory for activities with sensible defaults."""

    def _make(activity_id, start, end, coords=DUOMO, **kwargs):
        kwargs.setdefault("title", activity_id.replace("-", " ").title())
        kwargs.setdefault("location_name", "Florence")
        kwargs.setdefault("kind", ActivityKind.SIGHTSEEING)
        sh, sm = (int(p) for p in start.split(":"))
        eh, em = (int(p) for p in end.split(":"))
        return Activity(
            activity_id=activity_id,
            start=time(sh, sm),
            end=time(eh, em),
            coords=coords,
            **kwargs,
        )

    return _make


@pytest.fixture
def activities(make_activity):
    """A short Florence day: museum, lunch and the train back."""
    return [
        make_activity("museum", "09:00", "11:00", DUOMO, title="Cathedral Museum", location_name="Piazza del Duomo"),
        make_activity(
            "lunch", "11:30", "12:30", MERCATO, title="Lunch", location_name="Mercato Centrale", kind=ActivityKind.FOOD
        ),
        make_activity(
            "train",
            "16:00",
            "17:00",
            SMN,
            title="Train to Livorno",
            location_name="Santa Maria Novella",
            kind=ActivityKind.TRANSPORT,
            critical=True,
        ),
    ]


@pytest.fixture
def port_call(activities):
    return PortCall(
        name="Florence",
        day=DAY,
        tz_name="Europe/Rome",
        schedule=Schedule(activities),
        fixed_points=(PointOfInterest(name="Ponte Vecchio", coords=PONTE_VECCHIO),),
        track=(SMN, MERCATO, DUOMO, PONTE_VECCHIO),
        all_aboard=time(17, 30),
        departure=time(18, 0),
    )


@pytest.fixture
def surface():
    return RecordingSurface(center=DUOMO, zoom=14)


@pytest.fixture
def region():
    return BoundingBox(south=43.70, west=11.20, north=43.82, east=11.30)


@pytest.fixture
def fake_lookup():
    return FakeLookup(
        places=[
            ExternalPlace(label="Gelateria dei Neri", coords=Coordinate(43.7685, 11.2610), address="Via dei Neri, Firenze"),
            ExternalPlace(label="Mercato Centrale", coords=MERCATO, address="Via dell'Ariento, Firenze"),
        ]
    )


@pytest.fixture
def failing_lookup():
    return FakeLookup(error=PlaceLookupError("Nominatim returned HTTP 503"))


@pytest.fixture
def sample_itinerary_path():
    from pathlib import Path

    return Path(__file__).resolve().parent.parent / "data" / "port_call_florence.json"
