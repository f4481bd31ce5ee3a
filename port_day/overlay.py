"""Map overlay synchronizer.

The synchronizer is the only component that creates or destroys layer handles. It keeps
them in a ``LayerArena`` keyed by stable layer keys and, on every ``reconcile``, compares the
layer each key *should* show with the one it *does* show:

- unchanged keys are left alone (an open popup stays open),
- changed keys release the old handle before the new one is built,
- keys that are no longer wanted are released.

Interactive callbacks (marker clicks, the waypoint delete button) are bound while a handle is
built, so a rebuilt handle is always re-wired.
"""

from __future__ import annotations

import html
import logging
import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Iterable

from port_day.geo import directions_url
from port_day.models import (
    DEFAULT_FOCUS_ZOOM,
    Activity,
    Coordinate,
    PointOfInterest,
    SearchResult,
    Waypoint,
)
from port_day.surface import RenderingSurface

logger = logging.getLogger(__name__)

TRACK_KEY = "track"
SEARCH_KEY = "search"
USER_KEY = "user"

TRACK_COLOR_STREET = "#1e3a8a"
TRACK_COLOR_SATELLITE = "#facc15"


class LayerKind(str, Enum):
    ACTIVITY = "activity"
    POI = "poi"
    TRACK = "track"
    WAYPOINT = "waypoint"
    SEARCH = "search"
    USER = "user"


class Shape(str, Enum):
    MARKER = "marker"
    POLYLINE = "polyline"
    CIRCLE = "circle"


@dataclass(frozen=True, slots=True)
class LayerSpec:
    """Everything a layer's rendering depends on. Equal specs mean nothing to redraw."""

    key: str
    kind: LayerKind
    shape: Shape
    points: tuple[Coordinate, ...]
    style: tuple[tuple[str, Any], ...]
    popup: str | None = None
    actions: tuple[str, ...] = ()

    @property
    def style_dict(self) -> dict[str, Any]:
        return dict(self.style)


def activity_key(activity_id: str) -> str:
    return f"{LayerKind.ACTIVITY.value}:{activity_id}"


def waypoint_key(waypoint_id: str) -> str:
    return f"{LayerKind.WAYPOINT.value}:{waypoint_id}"


def poi_key(index: int) -> str:
    return f"{LayerKind.POI.value}:{index}"


@dataclass(frozen=True, slots=True)
class OverlayInputs:
    """Upstream data the overlay is reconciled against."""

    activities: tuple[Activity, ...] = ()
    waypoints: tuple[Waypoint, ...] = ()
    user_position: Coordinate | None = None
    satellite: bool = False
    fixed_points: tuple[PointOfInterest, ...] = ()
    track: tuple[Coordinate, ...] = ()


@dataclass(frozen=True, slots=True)
class ReconcileReport:
    created: tuple[str, ...] = ()
    replaced: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    kept: tuple[str, ...] = ()

    @property
    def churn(self) -> int:
        return len(self.created) + len(self.replaced) + len(self.removed)

    def merge(self, other: ReconcileReport) -> ReconcileReport:
        return ReconcileReport(
            created=self.created + other.created,
            replaced=self.replaced + other.replaced,
            removed=self.removed + other.removed,
            kept=other.kept,
        )


@dataclass(frozen=True, slots=True)
class PendingWaypoint:
    """A tapped coordinate waiting for the creation form to be confirmed or cancelled."""

    coords: Coordinate


class LayerArena:
    """Live handles keyed by layer key, at most one per key."""

    def __init__(self, surface: RenderingSurface) -> None:
        self._surface = surface
        self._entries: dict[str, tuple[LayerSpec, object]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries)

    def spec(self, key: str) -> LayerSpec | None:
        entry = self._entries.get(key)
        return entry[0] if entry is not None else None

    def put(self, spec: LayerSpec, build: Callable[[LayerSpec], object]) -> bool:
        """Install ``spec``; any existing handle for the key is released first.

        Returns:
            True if an existing handle was replaced.
        """

        replaced = self.release(spec.key)
        self._entries[spec.key] = (spec, build(spec))
        return replaced

    def release(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._surface.remove(entry[1])
        return True

    def clear(self) -> None:
        for key in list(self._entries):
            self.release(key)


def _style(**kwargs: Any) -> tuple[tuple[str, Any], ...]:
    return tuple(sorted(kwargs.items()))


class MapOverlaySynchronizer:
    """Owns the map's layer set and keeps it in agreement with its inputs.

    Args:
        surface: Rendering collaborator.
        on_waypoint_created: Receives a confirmed waypoint before its layer is added.
        on_waypoint_deleted: Receives the id of a waypoint deleted from its popup.
        on_marker_click: Optional listener for clicks on any marker (layer key).
        id_factory: Generates waypoint ids.
        now_ms: Epoch-millisecond clock for waypoint creation stamps.
    """

    def __init__(
        self,
        surface: RenderingSurface,
        *,
        on_waypoint_created: Callable[[Waypoint], None],
        on_waypoint_deleted: Callable[[str], None],
        on_marker_click: Callable[[str], None] | None = None,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
        now_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ) -> None:
        self._surface = surface
        self._arena = LayerArena(surface)
        self._on_waypoint_created = on_waypoint_created
        self._on_waypoint_deleted = on_waypoint_deleted
        self._on_marker_click = on_marker_click
        self._id_factory = id_factory
        self._now_ms = now_ms
        self._inputs = OverlayInputs()
        self._deleted_waypoints: set[str] = set()
        self._pending: PendingWaypoint | None = None
        self._reconciling = False
        self._queued: list[OverlayInputs] = []
        self.focused: tuple[Coordinate, int] | None = None
        surface.set_map_tap_listener(self.handle_map_tap)

    @property
    def inputs(self) -> OverlayInputs:
        return self._inputs

    @property
    def pending(self) -> PendingWaypoint | None:
        return self._pending

    @property
    def layer_keys(self) -> list[str]:
        return self._arena.keys()

    def layer_spec(self, key: str) -> LayerSpec | None:
        return self._arena.spec(key)

    # --- reconciliation ---------------------------------------------------

    def reconcile(self, inputs: OverlayInputs) -> ReconcileReport:
        """Bring the layer set in line with ``inputs``.

        A call made while another pass is running (e.g. from a rendering callback) is queued
        and applied after it, in call order.
        """

        if self._reconciling:
            self._queued.append(inputs)
            return ReconcileReport()
        self._reconciling = True
        try:
            report = self._reconcile_once(inputs)
            while self._queued:
                report = report.merge(self._reconcile_once(self._queued.pop(0)))
        finally:
            self._reconciling = False
        return report

    def _reconcile_once(self, inputs: OverlayInputs) -> ReconcileReport:
        self._inputs = inputs
        desired = self._desired_specs(inputs)
        created: list[str] = []
        replaced: list[str] = []
        removed: list[str] = []
        kept: list[str] = []

        for key in self._arena.keys():
            # the transient search marker is driven by search selection, not by inputs
            if key == SEARCH_KEY or key in desired:
                continue
            self._arena.release(key)
            removed.append(key)

        for key, spec in desired.items():
            if self._arena.spec(key) == spec:
                kept.append(key)
                continue
            if self._arena.put(spec, self._build):
                replaced.append(key)
            else:
                created.append(key)

        report = ReconcileReport(
            created=tuple(created), replaced=tuple(replaced), removed=tuple(removed), kept=tuple(kept)
        )
        if report.churn:
            logger.debug(
                "reconcile: created=%s replaced=%s removed=%s kept=%s",
                len(created),
                len(replaced),
                len(removed),
                len(kept),
            )
        return report

    def _desired_specs(self, inputs: OverlayInputs) -> dict[str, LayerSpec]:
        specs: dict[str, LayerSpec] = {}
        for activity in inputs.activities:
            spec = self._activity_spec(activity)
            specs[spec.key] = spec
        for index, point in enumerate(inputs.fixed_points):
            spec = self._poi_spec(index, point)
            specs[spec.key] = spec
        if inputs.track:
            specs[TRACK_KEY] = self._track_spec(inputs.track, inputs.satellite)
        for waypoint in inputs.waypoints:
            if waypoint.waypoint_id in self._deleted_waypoints:
                continue
            spec = self._waypoint_spec(waypoint)
            specs[spec.key] = spec
        if inputs.user_position is not None and inputs.user_position.is_finite:
            specs[USER_KEY] = self._user_spec(inputs.user_position)
        return specs

    # --- layer specs ------------------------------------------------------

    @staticmethod
    def _activity_spec(activity: Activity) -> LayerSpec:
        nav_url = activity.maps_url or directions_url(activity.coords)
        popup = (
            f"<b>{html.escape(activity.title)}</b><br>"
            f"{html.escape(activity.description)}<br>"
            f'<a href="{html.escape(nav_url)}" target="_blank" rel="noopener noreferrer">GO NOW</a>'
        )
        color = "#10b981" if activity.completed else ("#e11d48" if activity.critical else "#1e3a8a")
        return LayerSpec(
            key=activity_key(activity.activity_id),
            kind=LayerKind.ACTIVITY,
            shape=Shape.MARKER,
            points=(activity.coords,),
            style=_style(color=color, completed=activity.completed),
            popup=popup,
        )

    @staticmethod
    def _poi_spec(index: int, point: PointOfInterest) -> LayerSpec:
        return LayerSpec(
            key=poi_key(index),
            kind=LayerKind.POI,
            shape=Shape.CIRCLE,
            points=(point.coords,),
            style=_style(radius=6, fill_color="#BE123C", color="#ffffff", weight=2, opacity=1.0, fill_opacity=0.8),
            popup=f"<b>{html.escape(point.name)}</b>",
        )

    @staticmethod
    def _track_spec(track: tuple[Coordinate, ...], satellite: bool) -> LayerSpec:
        color = TRACK_COLOR_SATELLITE if satellite else TRACK_COLOR_STREET
        return LayerSpec(
            key=TRACK_KEY,
            kind=LayerKind.TRACK,
            shape=Shape.POLYLINE,
            points=track,
            style=_style(color=color, weight=4, opacity=0.7, dash_array="8, 12"),
        )

    @staticmethod
    def _waypoint_spec(waypoint: Waypoint) -> LayerSpec:
        popup = f"<b>{html.escape(waypoint.name)}</b>"
        if waypoint.note:
            popup += f"<br>{html.escape(waypoint.note)}"
        return LayerSpec(
            key=waypoint_key(waypoint.waypoint_id),
            kind=LayerKind.WAYPOINT,
            shape=Shape.MARKER,
            points=(waypoint.coords,),
            style=_style(color="#7c3aed"),
            popup=popup,
            actions=("delete",),
        )

    @staticmethod
    def _user_spec(position: Coordinate) -> LayerSpec:
        return LayerSpec(
            key=USER_KEY,
            kind=LayerKind.USER,
            shape=Shape.MARKER,
            points=(position,),
            style=_style(color="#3b82f6", size=18),
        )

    @staticmethod
    def _search_spec(result: SearchResult) -> LayerSpec:
        popup = f"<b>{html.escape(result.label)}</b>"
        if result.detail:
            popup += f"<br>{html.escape(result.detail)}"
        return LayerSpec(
            key=SEARCH_KEY,
            kind=LayerKind.SEARCH,
            shape=Shape.MARKER,
            points=(result.coords,),
            style=_style(color="#f59e0b"),
            popup=popup,
        )

    def _build(self, spec: LayerSpec) -> object:
        """Create the visual handle for ``spec`` and bind its callbacks."""

        style = spec.style_dict
        if spec.shape is Shape.POLYLINE:
            return self._surface.add_polyline(spec.key, spec.points, style=style)
        if spec.shape is Shape.CIRCLE:
            return self._surface.add_circle_marker(spec.key, spec.points[0], style=style, popup=spec.popup)

        actions: dict[str, Callable[[], None]] = {}
        if spec.kind is LayerKind.WAYPOINT:
            waypoint_id = spec.key.partition(":")[2]
            actions["delete"] = lambda: self.delete_waypoint(waypoint_id)
        return self._surface.add_marker(
            spec.key,
            spec.points[0],
            style=style,
            popup=spec.popup,
            on_click=lambda: self._marker_clicked(spec.key),
            actions=actions,
        )

    def _marker_clicked(self, key: str) -> None:
        if self._on_marker_click is not None:
            self._on_marker_click(key)

    # --- view -------------------------------------------------------------

    def focus(self, coords: Coordinate, zoom: int = DEFAULT_FOCUS_ZOOM) -> None:
        """Pan/zoom the view. Independent of ``reconcile``."""

        if not coords.is_finite:
            logger.warning("ignoring focus on non-finite coordinate %s", coords)
            return
        self.focused = (coords, zoom)
        self._surface.fly_to(coords, zoom)

    def show_search_marker(self, result: SearchResult, zoom: int = DEFAULT_FOCUS_ZOOM) -> None:
        """Place the single transient search marker (replacing any previous one) and focus it."""

        self._arena.put(self._search_spec(result), self._build)
        self.focus(result.coords, zoom)

    def clear_search_marker(self) -> bool:
        return self._arena.release(SEARCH_KEY)

    # --- waypoints --------------------------------------------------------

    def handle_map_tap(self, coords: Coordinate) -> PendingWaypoint | None:
        """A map tap opens the waypoint form for that coordinate."""

        if not coords.is_finite:
            logger.warning("ignoring map tap at non-finite coordinate %s", coords)
            return None
        self._pending = PendingWaypoint(coords=coords)
        return self._pending

    def cancel_waypoint(self) -> None:
        self._pending = None

    def confirm_waypoint(self, name: str, note: str | None = None) -> Waypoint:
        """Confirm the open waypoint form.

        The owner is notified first; the layer is only added once that succeeded.

        Raises:
            RuntimeError: If no map tap is pending.
            ValueError: If ``name`` is blank.
        """

        if self._pending is None:
            raise RuntimeError("no pending waypoint: tap the map first")
        clean_name = (name or "").strip()
        if not clean_name:
            raise ValueError("waypoint name is required")
        clean_note = (note or "").strip() or None
        waypoint = Waypoint(
            waypoint_id=self._id_factory(),
            name=clean_name,
            coords=self._pending.coords,
            created_ms=self._now_ms(),
            note=clean_note,
        )
        self._on_waypoint_created(waypoint)
        self._pending = None
        self._arena.put(self._waypoint_spec(waypoint), self._build)
        self._inputs = replace(self._inputs, waypoints=self._inputs.waypoints + (waypoint,))
        return waypoint

    def delete_waypoint(self, waypoint_id: str) -> bool:
        """Remove exactly this waypoint's layer and tell the owner. False if unknown."""

        if not self._arena.release(waypoint_key(waypoint_id)):
            return False
        self._deleted_waypoints.add(waypoint_id)
        self._inputs = replace(
            self._inputs,
            waypoints=tuple(w for w in self._inputs.waypoints if w.waypoint_id != waypoint_id),
        )
        self._on_waypoint_deleted(waypoint_id)
        return True

    def close(self) -> None:
        """Release every handle (view teardown)."""

        self._arena.clear()
        self._surface.set_map_tap_listener(None)


def layer_keys_for(kind: LayerKind, keys: Iterable[str]) -> list[str]:
    prefix = f"{kind.value}:"
    return [k for k in keys if k == kind.value or k.startswith(prefix)]
