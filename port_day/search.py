"""Place search: local substring matches merged with a debounced external lookup."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Final, Iterable, Protocol, Sequence

from port_day.geo import BoundingBox
from port_day.models import Activity, Coordinate, PointOfInterest, SearchOrigin, SearchResult, Waypoint

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH: Final[int] = 2
DEBOUNCE_SECONDS: Final[float] = 0.5


class PlaceLookupError(Exception):
    """The external place lookup failed (network, HTTP status or response format)."""


@dataclass(frozen=True, slots=True)
class ExternalPlace:
    label: str
    coords: Coordinate
    address: str = ""


class PlaceLookup(Protocol):
    def search(self, text: str, region: BoundingBox) -> list[ExternalPlace]: ...


@dataclass(frozen=True, slots=True)
class SearchParams:
    """Parameters controlling query evaluation."""

    debounce_seconds: float = DEBOUNCE_SECONDS
    min_query_length: int = MIN_QUERY_LENGTH
    max_external_results: int = 5


def _matches(query: str, *fields: str | None) -> bool:
    q = query.casefold()
    return any(f and q in f.casefold() for f in fields)


def match_local(
    query: str,
    activities: Iterable[Activity] = (),
    fixed_points: Iterable[PointOfInterest] = (),
    waypoints: Iterable[Waypoint] = (),
) -> list[SearchResult]:
    """Case-insensitive substring matches: schedule, then fixed points, then user waypoints."""

    q = query.strip()
    if not q:
        return []
    out: list[SearchResult] = []
    for a in activities:
        if _matches(q, a.title, a.location_name):
            out.append(
                SearchResult(
                    label=a.title,
                    coords=a.coords,
                    origin=SearchOrigin.SCHEDULE,
                    detail=f"{a.location_name} · {a.start:%H:%M}",
                    ref=a.activity_id,
                )
            )
    for p in fixed_points:
        if _matches(q, p.name):
            out.append(SearchResult(label=p.name, coords=p.coords, origin=SearchOrigin.POI, detail="Route point"))
    for w in waypoints:
        if _matches(q, w.name):
            out.append(
                SearchResult(
                    label=w.name,
                    coords=w.coords,
                    origin=SearchOrigin.MINE,
                    detail=w.note or "My place",
                    ref=w.waypoint_id,
                )
            )
    return out


def merge_results(
    local: Sequence[SearchResult],
    external: Sequence[ExternalPlace],
    max_external: int = 5,
) -> list[SearchResult]:
    """Dedupe per source and append external places last.

    Results that carry a ``ref`` (schedule stops, user waypoints) are deduped by it, so two
    stops sharing a title both stay; the rest by label. An external place whose label repeats an
    internal result is dropped.
    """

    seen: set[tuple[SearchOrigin, str, str]] = set()
    merged: list[SearchResult] = []
    for r in sorted(local, key=lambda r: list(SearchOrigin).index(r.origin)):
        k = (r.origin, "ref", r.ref) if r.ref is not None else (r.origin, "label", r.label.casefold())
        if k in seen:
            continue
        seen.add(k)
        merged.append(r)

    internal_labels = {r.label.casefold() for r in merged}
    added = 0
    for place in external:
        if added >= max_external:
            break
        label = place.label.strip()
        k = (SearchOrigin.EXTERNAL, "label", label.casefold())
        if not label or k in seen or label.casefold() in internal_labels:
            continue
        seen.add(k)
        merged.append(SearchResult(label=label, coords=place.coords, origin=SearchOrigin.EXTERNAL, detail=place.address))
        added += 1
    return merged


class PlaceSearchMatcher:
    """Debounced search over the schedule, fixed points, user waypoints and an external lookup.

    Every query change bumps a generation counter; a result is only applied if its generation
    is still current, so a slow lookup for an old query can never overwrite newer results.

    Args:
        lookup: External place lookup (None disables external results).
        region: Bounding region handed to the lookup.
        params: Debounce and limits.
        on_results: Called with the result list whenever results are applied.
        on_select: Called with the chosen result (places the marker and focuses the map).
        sleep: Awaitable sleep used for the quiet period.
    """

    def __init__(
        self,
        lookup: PlaceLookup | None,
        region: BoundingBox | None,
        *,
        params: SearchParams = SearchParams(),
        on_results: Callable[[list[SearchResult]], None] | None = None,
        on_select: Callable[[SearchResult], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._lookup = lookup
        self._region = region
        self._params = params
        self._on_results = on_results
        self._on_select = on_select
        self._sleep = sleep
        self._activities: tuple[Activity, ...] = ()
        self._fixed_points: tuple[PointOfInterest, ...] = ()
        self._waypoints: tuple[Waypoint, ...] = ()
        self._generation = 0
        self._pending: asyncio.Task[None] | None = None
        self.query = ""
        self.results: list[SearchResult] = []
        self.is_open = False
        self.external_failed = False

    @property
    def generation(self) -> int:
        return self._generation

    def set_sources(
        self,
        *,
        activities: Iterable[Activity] | None = None,
        fixed_points: Iterable[PointOfInterest] | None = None,
        waypoints: Iterable[Waypoint] | None = None,
    ) -> None:
        if activities is not None:
            self._activities = tuple(activities)
        if fixed_points is not None:
            self._fixed_points = tuple(fixed_points)
        if waypoints is not None:
            self._waypoints = tuple(waypoints)

    def _supersede(self) -> int:
        self._generation += 1
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        return self._generation

    def _apply(self, results: list[SearchResult]) -> None:
        self.results = results
        self.is_open = bool(results)
        if self._on_results is not None:
            self._on_results(results)

    def on_query_changed(self, text: str) -> asyncio.Task[None] | None:
        """Handle a keystroke. Must be called from a running event loop.

        Returns:
            The debounce task, or None when the query is too short to search.
        """

        self.query = text
        generation = self._supersede()
        if len(text.strip()) < self._params.min_query_length:
            self._apply([])
            return None
        self._pending = asyncio.get_running_loop().create_task(self._debounced(text, generation))
        return self._pending

    async def _debounced(self, text: str, generation: int) -> None:
        await self._sleep(self._params.debounce_seconds)
        if generation != self._generation:
            return
        results = await self._evaluate(text, generation)
        if results is not None:
            self._apply(results)

    async def search_once(self, text: str) -> list[SearchResult]:
        """Evaluate ``text`` immediately, without the quiet period."""

        self.query = text
        generation = self._supersede()
        if len(text.strip()) < self._params.min_query_length:
            self._apply([])
            return []
        results = await self._evaluate(text, generation)
        if results is None:
            return []
        self._apply(results)
        return results

    async def _evaluate(self, text: str, generation: int) -> list[SearchResult] | None:
        query = text.strip()
        local = match_local(query, self._activities, self._fixed_points, self._waypoints)
        external: list[ExternalPlace] = []
        self.external_failed = False
        if self._lookup is not None and self._region is not None:
            try:
                external = await asyncio.to_thread(self._lookup.search, query, self._region)
            except (PlaceLookupError, OSError) as exc:
                logger.warning("external place lookup failed for %r: %s", query, exc)
                self.external_failed = True
        if generation != self._generation:
            logger.debug("discarding results for superseded query %r", query)
            return None
        return merge_results(local, external, self._params.max_external_results)

    def select(self, result: SearchResult) -> None:
        """Choose a result: close the list, show the label, hand the place to the map.

        The label is written to ``query`` directly, so it never re-enters the debounce pipeline.
        """

        self._supersede()
        self.query = result.label
        self.results = []
        self.is_open = False
        if self._on_select is not None:
            self._on_select(result)

    def close(self) -> None:
        self._supersede()
