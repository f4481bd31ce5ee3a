"""Pydeck rendering of the live overlay layers.

The dashboard draws whatever ``RecordingSurface`` currently holds:
- track polylines as a PathLayer,
- route points as a stroked ScatterplotLayer,
- activity, waypoint, search and user markers as a pickable ScatterplotLayer.

Pydeck expects ``[lng, lat]`` positions and ``[R, G, B, A]`` colors.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import pydeck as pdk

from port_day.surface import RecordedLayer, RecordingSurface

logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")
_TAG_RE = re.compile(r"<[^>]+>")

MARKER_RADIUS_M = 14
CIRCLE_RADIUS_SCALE_M = 2.0
FALLBACK_RGB = (128, 128, 128)


def hex_to_rgba(color: str, opacity: float = 1.0) -> list[int]:
    """Convert ``#rrggbb`` to ``[r, g, b, a]``. Unknown formats render grey."""

    m = _HEX_RE.match(str(color).strip())
    if m is None:
        logger.debug("unsupported color %r, using grey", color)
        r, g, b = FALLBACK_RGB
    else:
        v = m.group(1)
        r, g, b = int(v[0:2], 16), int(v[2:4], 16), int(v[4:6], 16)
    a = int(round(255 * min(1.0, max(0.0, float(opacity)))))
    return [r, g, b, a]


def _tooltip_text(popup: str | None) -> str:
    if not popup:
        return ""
    return _TAG_RE.sub(" ", popup.replace("<br>", "\n")).strip()


def layer_rows(layers: list[RecordedLayer]) -> dict[str, list[dict[str, Any]]]:
    """Group live layers into pydeck data rows by shape."""

    paths: list[dict[str, Any]] = []
    circles: list[dict[str, Any]] = []
    markers: list[dict[str, Any]] = []
    for layer in layers:
        style = layer.style
        if layer.shape == "polyline":
            paths.append(
                {
                    "key": layer.key,
                    "path": [[p.lng, p.lat] for p in layer.points],
                    "color": hex_to_rgba(style.get("color", ""), style.get("opacity", 1.0)),
                    "width": style.get("weight", 4),
                    "label": "",
                }
            )
        elif layer.shape == "circle":
            p = layer.points[0]
            circles.append(
                {
                    "key": layer.key,
                    "position": [p.lng, p.lat],
                    "radius": style.get("radius", 6) * CIRCLE_RADIUS_SCALE_M,
                    "fill": hex_to_rgba(style.get("fill_color", style.get("color", "")), style.get("fill_opacity", 1.0)),
                    "line": hex_to_rgba(style.get("color", "#ffffff")),
                    "label": _tooltip_text(layer.popup),
                }
            )
        else:
            p = layer.points[0]
            markers.append(
                {
                    "key": layer.key,
                    "position": [p.lng, p.lat],
                    "radius": style.get("size", MARKER_RADIUS_M),
                    "fill": hex_to_rgba(style.get("color", "")),
                    "label": _tooltip_text(layer.popup),
                }
            )
    return {"paths": paths, "circles": circles, "markers": markers}


def build_deck(surface: RecordingSurface, *, satellite: bool = False) -> pdk.Deck:
    """Create a Deck of the surface's live layers, centered on its current view."""

    rows = layer_rows(surface.layers())
    layers = [
        pdk.Layer(
            "PathLayer",
            rows["paths"],
            get_path="path",
            get_color="color",
            get_width="width",
            width_units="pixels",
            pickable=False,
            id="track",
        ),
        pdk.Layer(
            "ScatterplotLayer",
            rows["circles"],
            get_position="position",
            get_radius="radius",
            get_fill_color="fill",
            get_line_color="line",
            stroked=True,
            line_width_min_pixels=2,
            pickable=True,
            id="route_points",
        ),
        pdk.Layer(
            "ScatterplotLayer",
            rows["markers"],
            get_position="position",
            get_radius="radius",
            radius_min_pixels=6,
            get_fill_color="fill",
            get_line_color=[255, 255, 255, 255],
            stroked=True,
            line_width_min_pixels=2,
            pickable=True,
            auto_highlight=True,
            id="markers",
        ),
    ]
    if satellite:
        map_provider, map_style = "mapbox", "satellite"
    else:
        map_provider, map_style = "carto", "road"
    return pdk.Deck(
        map_provider=map_provider,
        map_style=map_style,
        initial_view_state=pdk.ViewState(
            latitude=surface.center.lat,
            longitude=surface.center.lng,
            zoom=surface.zoom,
        ),
        layers=layers,
        tooltip={"text": "{label}"},
    )
