"""Rendering collaborator interface and an in-memory implementation.

The map overlay only talks to a ``RenderingSurface``: it creates markers, polylines and
circle markers, removes them again and moves the view. ``RecordingSurface`` keeps the live
layers in memory so they can be drawn by the dashboard (pydeck) or inspected by tests, and
replays user interaction (map taps, marker clicks, popup buttons) back into the callbacks
that were bound when each layer was built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol, Sequence

from port_day.models import Coordinate

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class RenderingSurface(Protocol):
    def add_marker(
        self,
        key: str,
        coords: Coordinate,
        *,
        style: Mapping[str, Any],
        popup: str | None = None,
        on_click: Callback | None = None,
        actions: Mapping[str, Callback] | None = None,
    ) -> object: ...

    def add_polyline(self, key: str, points: Sequence[Coordinate], *, style: Mapping[str, Any]) -> object: ...

    def add_circle_marker(
        self,
        key: str,
        coords: Coordinate,
        *,
        style: Mapping[str, Any],
        popup: str | None = None,
    ) -> object: ...

    def remove(self, handle: object) -> None: ...

    def fly_to(self, coords: Coordinate, zoom: int) -> None: ...

    def set_map_tap_listener(self, listener: Callable[[Coordinate], None] | None) -> None: ...


@dataclass(eq=False)
class RecordedLayer:
    """A live visual handle held by ``RecordingSurface``."""

    key: str
    shape: str
    points: tuple[Coordinate, ...]
    style: dict[str, Any]
    popup: str | None = None
    on_click: Callback | None = None
    actions: dict[str, Callback] = field(default_factory=dict)
    removed: bool = False


class RecordingSurface:
    """In-memory rendering surface."""

    def __init__(self, center: Coordinate, zoom: int = 14) -> None:
        self.center = center
        self.zoom = zoom
        self.added = 0
        self.removed = 0
        self._live: list[RecordedLayer] = []
        self._tap_listener: Callable[[Coordinate], None] | None = None

    def _add(self, layer: RecordedLayer) -> RecordedLayer:
        self._live.append(layer)
        self.added += 1
        return layer

    def add_marker(
        self,
        key: str,
        coords: Coordinate,
        *,
        style: Mapping[str, Any],
        popup: str | None = None,
        on_click: Callback | None = None,
        actions: Mapping[str, Callback] | None = None,
    ) -> RecordedLayer:
        return self._add(
            RecordedLayer(
                key=key,
                shape="marker",
                points=(coords,),
                style=dict(style),
                popup=popup,
                on_click=on_click,
                actions=dict(actions or {}),
            )
        )

    def add_polyline(self, key: str, points: Sequence[Coordinate], *, style: Mapping[str, Any]) -> RecordedLayer:
        return self._add(RecordedLayer(key=key, shape="polyline", points=tuple(points), style=dict(style)))

    def add_circle_marker(
        self,
        key: str,
        coords: Coordinate,
        *,
        style: Mapping[str, Any],
        popup: str | None = None,
    ) -> RecordedLayer:
        return self._add(RecordedLayer(key=key, shape="circle", points=(coords,), style=dict(style), popup=popup))

    def remove(self, handle: object) -> None:
        if not isinstance(handle, RecordedLayer) or handle.removed:
            logger.warning("remove() called with a handle that is not live: %r", handle)
            return
        handle.removed = True
        self._live.remove(handle)
        self.removed += 1

    def fly_to(self, coords: Coordinate, zoom: int) -> None:
        self.center = coords
        self.zoom = zoom

    def set_map_tap_listener(self, listener: Callable[[Coordinate], None] | None) -> None:
        self._tap_listener = listener

    # --- inspection -------------------------------------------------------

    @property
    def live_count(self) -> int:
        return len(self._live)

    def layers(self) -> list[RecordedLayer]:
        return list(self._live)

    def find(self, key: str) -> list[RecordedLayer]:
        return [layer for layer in self._live if layer.key == key]

    # --- user interaction -------------------------------------------------

    def tap_map(self, coords: Coordinate) -> None:
        if self._tap_listener is not None:
            self._tap_listener(coords)

    def click_marker(self, key: str) -> None:
        for layer in self.find(key):
            if layer.on_click is not None:
                layer.on_click()

    def click_popup_button(self, key: str, action: str) -> None:
        """Invoke a popup button bound on the live layer ``key``.

        Raises:
            KeyError: If no live layer with that key exposes ``action``.
        """

        for layer in self.find(key):
            callback = layer.actions.get(action)
            if callback is not None:
                callback()
                return
        raise KeyError(f"no live layer {key!r} with popup action {action!r}")
