"""Forward geocoding (place name -> coordinates) for the search box.

This module intentionally uses only Python standard library to keep the project lightweight.

Important:
    - Public geocoding services are rate-limited.
    - For Nominatim (OpenStreetMap), please respect their usage policy and set a reasonable
      request interval and a descriptive User-Agent.
"""

from __future__ import annotations

import http.client
import json
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from port_day.geo import BoundingBox
from port_day.models import Coordinate
from port_day.search import ExternalPlace, PlaceLookupError


@dataclass(frozen=True, slots=True)
class NominatimConfig:
    """Configuration for Nominatim search API."""

    base_url: str = "https://nominatim.openstreetmap.org/search"
    accept_language: str = "en"
    limit: int = 5
    timeout_seconds: float = 10.0
    min_interval_seconds: float = 1.0
    user_agent: str = "port-day/0.1.0 (place-search; please set your own UA)"


def nominatim_search_raw(text: str, region: BoundingBox, cfg: NominatimConfig) -> list[dict[str, Any]]:
    """Call Nominatim search API bounded to ``region`` and return the raw JSON rows.

    This is a pure function (no cache, no throttling state).

    Raises:
        PlaceLookupError: On network errors, non-success HTTP status or a body that is not a
            JSON list.
    """

    params = {
        "format": "jsonv2",
        "q": text,
        "limit": str(cfg.limit),
        "viewbox": region.viewbox(),
        "bounded": "1",
        "addressdetails": "0",
        "accept-language": cfg.accept_language,
    }
    url = f"{cfg.base_url}?{urllib.parse.urlencode(params)}"
    req = urllib.request.Request(
        url,
        headers={
            "User-Agent": cfg.user_agent,
            "Accept": "application/json",
        },
        method="GET",
    )
    try:
        with urllib.request.urlopen(req, timeout=cfg.timeout_seconds) as resp:  # noqa: S310
            body = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        raise PlaceLookupError(f"Nominatim returned HTTP {exc.code}") from exc
    except (urllib.error.URLError, TimeoutError, OSError) as exc:
        raise PlaceLookupError(f"Nominatim request failed: {exc}") from exc
    except http.client.HTTPException as exc:
        # truncated or garbled responses (IncompleteRead, BadStatusLine, LineTooLong)
        raise PlaceLookupError(f"Nominatim sent a broken response: {exc!r}") from exc

    try:
        raw = json.loads(body)
    except json.JSONDecodeError as exc:
        raise PlaceLookupError("Nominatim returned a non-JSON body") from exc
    if not isinstance(raw, list):
        raise PlaceLookupError(f"unexpected Nominatim response type: {type(raw).__name__}")
    return [row for row in raw if isinstance(row, dict)]


def place_from_row(row: dict[str, Any]) -> ExternalPlace | None:
    """Convert one Nominatim row; None if it lacks a usable name or coordinate."""

    try:
        coords = Coordinate(lat=float(row["lat"]), lng=float(row["lon"]))
    except (KeyError, TypeError, ValueError):
        return None
    if not coords.is_finite:
        return None
    display = str(row.get("display_name", "") or "")
    label = str(row.get("name", "") or "") or display.split(",", 1)[0]
    if not label.strip():
        return None
    # the first fragment of display_name repeats the label; keep the rest as address
    address = display.split(",", 1)[1].strip() if "," in display else ""
    return ExternalPlace(label=label.strip(), coords=coords, address=address)


class NominatimPlaceLookup:
    """Place lookup using OpenStreetMap Nominatim."""

    def __init__(self, config: NominatimConfig = NominatimConfig()) -> None:
        self._cfg = config
        self._last_request_at = 0.0

    def search(self, text: str, region: BoundingBox) -> list[ExternalPlace]:
        self._sleep_if_needed()
        rows = nominatim_search_raw(text, region, self._cfg)
        places = [place_from_row(r) for r in rows]
        return [p for p in places if p is not None]

    def _sleep_if_needed(self) -> None:
        now = time.time()
        wait = self._cfg.min_interval_seconds - (now - self._last_request_at)
        if wait > 0:
            time.sleep(wait)
        self._last_request_at = time.time()
