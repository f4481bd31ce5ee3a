"""Live progress of the day's schedule against the wall clock."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Sequence

from port_day.models import Activity, Lifecycle
from port_day.timeutils import SECONDS_PER_DAY, minutes_of_day, seconds_since_midnight, window_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActivityTiming:
    """Derived temporal state of one activity."""

    activity_id: str
    state: Lifecycle
    progress: float
    duration_minutes: int


@dataclass(frozen=True, slots=True)
class GapTiming:
    """Idle interval between ``after_id`` ending and ``before_id`` starting."""

    after_id: str
    before_id: str
    minutes: int
    progress: float


@dataclass(frozen=True, slots=True)
class TimelineSnapshot:
    """Temporal state of the whole schedule at one clock value."""

    at_seconds: float
    activities: tuple[ActivityTiming, ...]
    gaps: tuple[GapTiming, ...]

    def timing(self, activity_id: str) -> ActivityTiming | None:
        for t in self.activities:
            if t.activity_id == activity_id:
                return t
        return None

    def gap_before(self, activity_id: str) -> GapTiming | None:
        for g in self.gaps:
            if g.before_id == activity_id:
                return g
        return None

    @property
    def active(self) -> tuple[str, ...]:
        return tuple(t.activity_id for t in self.activities if t.state is Lifecycle.ACTIVE)

    @property
    def next_upcoming(self) -> str | None:
        for t in self.activities:
            if t.state is Lifecycle.UPCOMING:
                return t.activity_id
        return None


def _bounds_seconds(start: time, end: time) -> tuple[float, float]:
    start_s = minutes_of_day(start) * 60.0
    end_s = minutes_of_day(end) * 60.0
    if end_s < start_s:
        end_s += SECONDS_PER_DAY
    return start_s, end_s


def window_progress(now_s: float, start: time, end: time) -> float:
    """Percentage of ``[start, end)`` elapsed at ``now_s`` seconds past midnight.

    0 before the window, 100 at or after its end, linear in between.
    """

    start_s, end_s = _bounds_seconds(start, end)
    if now_s < start_s:
        return 0.0
    if now_s >= end_s:
        return 100.0
    return min(100.0, max(0.0, 100.0 * (now_s - start_s) / (end_s - start_s)))


def lifecycle(activity: Activity, now_s: float) -> Lifecycle:
    """Discrete state; the user's completion flag always wins."""

    if activity.completed:
        return Lifecycle.COMPLETED
    start_s, end_s = _bounds_seconds(activity.start, activity.end)
    if start_s <= now_s < end_s:
        return Lifecycle.ACTIVE
    if now_s < start_s:
        return Lifecycle.UPCOMING
    return Lifecycle.ELAPSED_INCOMPLETE


def gap_minutes(previous: Activity, following: Activity) -> int:
    return max(0, minutes_of_day(following.start) - minutes_of_day(previous.end))


def compute_timeline(activities: Sequence[Activity], now_s: float) -> TimelineSnapshot:
    """Derive activity and gap state for the whole schedule.

    Args:
        activities: Schedule ordered by start time (never reordered here).
        now_s: Seconds since local midnight of the itinerary day.
    """

    timings = tuple(
        ActivityTiming(
            activity_id=a.activity_id,
            state=lifecycle(a, now_s),
            progress=window_progress(now_s, a.start, a.end),
            duration_minutes=window_minutes(a.start, a.end),
        )
        for a in activities
    )
    gaps: list[GapTiming] = []
    for prev, nxt in zip(activities, activities[1:]):
        minutes = gap_minutes(prev, nxt)
        progress = window_progress(now_s, prev.end, nxt.start) if minutes > 0 else 0.0
        gaps.append(
            GapTiming(after_id=prev.activity_id, before_id=nxt.activity_id, minutes=minutes, progress=progress)
        )
    return TimelineSnapshot(at_seconds=now_s, activities=timings, gaps=tuple(gaps))


class TemporalTracker:
    """Recomputes the timeline on clock ticks, refusing to go back in time.

    The clock is anchored to the itinerary ``day``; a tick after midnight keeps counting
    past 24h so every window reads as elapsed instead of restarting.
    """

    def __init__(self, day: date | None = None) -> None:
        self._day = day
        self._last_now: datetime | None = None
        self._snapshot: TimelineSnapshot | None = None

    @property
    def last_now(self) -> datetime | None:
        return self._last_now

    @property
    def snapshot(self) -> TimelineSnapshot | None:
        return self._snapshot

    def tick(self, now: datetime, activities: Sequence[Activity]) -> TimelineSnapshot:
        if self._last_now is not None and now < self._last_now:
            logger.debug("clock went back from %s to %s, keeping previous timeline", self._last_now, now)
            if self._snapshot is not None:
                return self._snapshot
        else:
            self._last_now = now
        if self._day is None:
            self._day = now.date()
        self._snapshot = compute_timeline(activities, seconds_since_midnight(self._last_now, self._day))
        return self._snapshot

    def refresh(self, activities: Sequence[Activity]) -> TimelineSnapshot | None:
        """Recompute at the last accepted clock value (e.g. after a completion toggle)."""

        if self._last_now is None or self._day is None:
            return None
        self._snapshot = compute_timeline(activities, seconds_since_midnight(self._last_now, self._day))
        return self._snapshot
