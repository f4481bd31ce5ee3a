"""Clock, geolocation and orientation push streams.

Each source hands out a ``Subscription`` at subscribe time. The consumer keeps it for the
lifetime of the tracking view and cancels it exactly once on teardown.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from typing import Awaitable, Callable, Generic, TypeVar

from port_day.models import DEFAULT_TICK_SECONDS, Coordinate
from port_day.spatial import heading_from_orientation

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """Cancellation handle for one subscriber. ``cancel()`` is idempotent."""

    def __init__(self, release: Callable[[], None]) -> None:
        self._release: Callable[[], None] | None = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def cancel(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()


class PushStream(Generic[T]):
    """A named stream of readings delivered synchronously to subscribers."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: dict[int, Callable[[T], None]] = {}
        self._next_id = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        sub_id = self._next_id
        self._next_id += 1
        self._subscribers[sub_id] = callback
        return Subscription(lambda: self._unsubscribe(sub_id))

    def _unsubscribe(self, sub_id: int) -> None:
        self._subscribers.pop(sub_id, None)
        logger.debug("%s: subscriber %s released", self.name, sub_id)

    def publish(self, value: T) -> None:
        for callback in list(self._subscribers.values()):
            callback(value)

    def report_error(self, error: BaseException | str) -> None:
        """Out-of-band sensor error: logged, never raised into subscribers."""

        logger.warning("%s: %s", self.name, error)


class ClockSource(PushStream[datetime]):
    """Wall clock published on a fixed period."""

    def __init__(
        self,
        now: Callable[[], datetime],
        period_seconds: float = DEFAULT_TICK_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__("clock")
        self._now = now
        self._period = period_seconds
        self._sleep = sleep

    def now(self) -> datetime:
        """Current reading without publishing it."""

        return self._now()

    def tick(self) -> datetime:
        value = self._now()
        self.publish(value)
        return value

    async def run(self, ticks: int | None = None) -> None:
        """Tick immediately, then every period. ``ticks`` bounds the loop (None = forever)."""

        count = 0
        while ticks is None or count < ticks:
            self.tick()
            count += 1
            if ticks is not None and count >= ticks:
                break
            await self._sleep(self._period)


class GeoSource(PushStream[Coordinate | None]):
    """User position; ``None`` means the fix was lost."""

    def __init__(self) -> None:
        super().__init__("geolocation")

    def push_fix(self, lat: float, lng: float) -> None:
        coord = Coordinate(lat=float(lat), lng=float(lng))
        if not coord.is_finite:
            logger.warning("geolocation: dropping non-finite fix (%s, %s)", lat, lng)
            return
        self.publish(coord)

    def lose_fix(self) -> None:
        self.publish(None)


class OrientationSource(PushStream[float | None]):
    """Device compass heading in degrees, or ``None`` when unavailable."""

    def __init__(self) -> None:
        super().__init__("orientation")

    def push_heading(self, heading: float | None) -> None:
        if heading is not None and not math.isfinite(heading):
            logger.warning("orientation: dropping non-finite heading %s", heading)
            return
        self.publish(heading)

    def push_orientation_event(self, alpha: float | None, webkit_compass_heading: float | None = None) -> None:
        self.push_heading(heading_from_orientation(alpha, webkit_compass_heading))
