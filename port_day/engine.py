"""Tracking view: wires the sources, calculators, map overlay and search together."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import TracebackType
from typing import Mapping

from port_day.itinerary import PortCall, Schedule
from port_day.models import DEFAULT_FOCUS_ZOOM, Activity, Coordinate, SearchResult, Waypoint
from port_day.overlay import MapOverlaySynchronizer, OverlayInputs, ReconcileReport
from port_day.search import PlaceLookup, PlaceSearchMatcher, SearchParams
from port_day.sources import ClockSource, GeoSource, OrientationSource, Subscription
from port_day.spatial import SpatialParams, SpatialRelation, SpatialTracker
from port_day.store import JsonStateStore
from port_day.surface import RenderingSurface
from port_day.timeline import TemporalTracker, TimelineSnapshot
from port_day.timeutils import countdown_to, epoch_ms_from_dt

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Tunables of the tracking view."""

    spatial: SpatialParams = field(default_factory=SpatialParams)
    search: SearchParams = field(default_factory=SearchParams)
    focus_zoom: int = DEFAULT_FOCUS_ZOOM
    overview_zoom: int = 14
    satellite: bool = False


@dataclass(frozen=True, slots=True)
class TrackingView:
    """Everything the timeline screen shows at one moment."""

    now: datetime | None
    timeline: TimelineSnapshot | None
    relations: Mapping[str, SpatialRelation]
    position: Coordinate | None
    heading: float | None
    all_aboard_in: timedelta | None


class TrackingEngine:
    """Live tracking of one port call.

    The engine subscribes to the clock, geolocation and orientation sources in ``start()``
    and releases each subscription exactly once in ``close()``. It can be used as a context
    manager.
    """

    def __init__(
        self,
        port_call: PortCall,
        store: JsonStateStore,
        surface: RenderingSurface,
        *,
        clock: ClockSource,
        geo: GeoSource,
        orientation: OrientationSource,
        lookup: PlaceLookup | None = None,
        config: EngineConfig = EngineConfig(),
    ) -> None:
        self._port_call = port_call
        self._store = store
        self._clock = clock
        self._geo = geo
        self._orientation = orientation
        self._config = config
        self._satellite = config.satellite
        self._temporal = TemporalTracker(port_call.day)
        self._spatial = SpatialTracker(config.spatial)
        self._overlay = MapOverlaySynchronizer(
            surface,
            on_waypoint_created=self._waypoint_created,
            on_waypoint_deleted=self._waypoint_deleted,
            now_ms=self._now_ms,
        )
        try:
            region = port_call.region
        except ValueError:
            logger.warning("itinerary has no coordinates; external place search disabled")
            region = None
        self._search = PlaceSearchMatcher(lookup, region, params=config.search, on_select=self._search_selected)
        self._waypoints: list[Waypoint] = []
        self._subscriptions: list[Subscription] = []
        self._started = False
        self._closed = False

    # --- lifecycle --------------------------------------------------------

    def start(self) -> TrackingEngine:
        if self._closed:
            raise RuntimeError("tracking engine already closed")
        if self._started:
            return self
        self._started = True
        self.schedule.apply_completion(self._store.load_completion_state())
        self._waypoints = self._store.load_waypoints()
        self._search.set_sources(
            activities=self.schedule.activities,
            fixed_points=self._port_call.fixed_points,
            waypoints=self._waypoints,
        )
        self._subscriptions = [
            self._clock.subscribe(self._on_tick),
            self._geo.subscribe(self._on_position),
            self._orientation.subscribe(self._on_heading),
        ]
        try:
            self._overlay.focus(self._port_call.center, self._config.overview_zoom)
        except ValueError:
            logger.warning("itinerary has no coordinates; keeping the surface's default view")
        self._sync_overlay()
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions = []
        self._search.close()
        self._overlay.close()

    def __enter__(self) -> TrackingEngine:
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # --- accessors --------------------------------------------------------

    @property
    def schedule(self) -> Schedule:
        return self._port_call.schedule

    @property
    def overlay(self) -> MapOverlaySynchronizer:
        return self._overlay

    @property
    def search(self) -> PlaceSearchMatcher:
        return self._search

    @property
    def waypoints(self) -> tuple[Waypoint, ...]:
        return tuple(self._waypoints)

    @property
    def satellite(self) -> bool:
        return self._satellite

    def view(self) -> TrackingView:
        now = self._temporal.last_now
        all_aboard_in = None
        if now is not None and self._port_call.all_aboard is not None:
            all_aboard_in = countdown_to(now, self._port_call.all_aboard)
        return TrackingView(
            now=now,
            timeline=self._temporal.snapshot,
            relations=self._spatial.relations(self.schedule.activities, now),
            position=self._spatial.position(now),
            heading=self._spatial.heading,
            all_aboard_in=all_aboard_in,
        )

    # --- source callbacks -------------------------------------------------

    def _reading_time(self) -> datetime:
        return self._clock.now()

    def _now_ms(self) -> int:
        return epoch_ms_from_dt(self._reading_time())

    def _on_tick(self, now: datetime) -> None:
        self._temporal.tick(now, self.schedule.activities)
        # a fix can go stale between ticks, which removes the user marker
        self._sync_overlay()

    def _on_position(self, position: Coordinate | None) -> None:
        if self._spatial.update_position(position, self._reading_time()):
            self._sync_overlay()

    def _on_heading(self, heading: float | None) -> None:
        self._spatial.update_heading(heading)

    # --- user actions -----------------------------------------------------

    def toggle_complete(self, activity_id: str) -> Activity:
        """Flip an activity's completion flag and persist all flags."""

        updated = self.schedule.toggle(activity_id)
        self._store.save_completion_state(self.schedule.completion_state())
        self._temporal.refresh(self.schedule.activities)
        self._search.set_sources(activities=self.schedule.activities)
        self._sync_overlay()
        return updated

    def locate(self, activity_id: str) -> Coordinate:
        """Focus the map on an activity (the schedule's "locate" button)."""

        coords = self.schedule.get(activity_id).coords
        self._overlay.focus(coords, self._config.focus_zoom)
        return coords

    def reset_timeline(self) -> None:
        """Forget the last clock value so an earlier time is accepted again.

        For switching between the wall clock and a simulated time of day; ordinary ticks never
        go back.
        """

        self._temporal = TemporalTracker(self._port_call.day)
        logger.debug("timeline reset for %s", self._port_call.day)

    def set_satellite(self, satellite: bool) -> ReconcileReport:
        self._satellite = satellite
        return self._sync_overlay()

    def select_search_result(self, result: SearchResult) -> None:
        self._search.select(result)

    # --- collaborator callbacks -------------------------------------------

    def _waypoint_created(self, waypoint: Waypoint) -> None:
        self._store.add_waypoint(waypoint)
        self._waypoints.append(waypoint)
        self._search.set_sources(waypoints=self._waypoints)

    def _waypoint_deleted(self, waypoint_id: str) -> None:
        self._store.remove_waypoint(waypoint_id)
        self._waypoints = [w for w in self._waypoints if w.waypoint_id != waypoint_id]
        self._search.set_sources(waypoints=self._waypoints)

    def _search_selected(self, result: SearchResult) -> None:
        self._overlay.show_search_marker(result, self._config.focus_zoom)

    # --- overlay ----------------------------------------------------------

    def overlay_inputs(self) -> OverlayInputs:
        return OverlayInputs(
            activities=self.schedule.activities,
            waypoints=tuple(self._waypoints),
            user_position=self._spatial.position(self._temporal.last_now),
            satellite=self._satellite,
            fixed_points=self._port_call.fixed_points,
            track=self._port_call.track,
        )

    def _sync_overlay(self) -> ReconcileReport:
        if self._closed or not self._started:
            return ReconcileReport()
        return self._overlay.reconcile(self.overlay_inputs())
