"""Persisted app state: activity completion flags and user waypoints.

The whole state lives in one small JSON document::

    {"completed": {"<activity id>": true, ...},
     "waypoints": [{"id": ..., "name": ..., "lat": ..., "lng": ..., "created_ms": ..., "note": ...}]}

Older saves stored the whole itinerary as a list of ``{"id": ..., "completed": ...}`` rows;
that form is still read. Anything else falls back to defaults instead of failing.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

from port_day.models import Coordinate, Waypoint

logger = logging.getLogger(__name__)


def _completion_from_raw(raw: Any) -> dict[str, bool]:
    out: dict[str, bool] = {}
    if isinstance(raw, dict):
        for k, v in raw.items():
            if isinstance(k, str) and isinstance(v, bool):
                out[k] = v
    elif isinstance(raw, list):
        for row in raw:
            if isinstance(row, dict) and isinstance(row.get("id"), str) and isinstance(row.get("completed"), bool):
                out[row["id"]] = row["completed"]
    else:
        logger.warning("ignoring completion state of unexpected type %s", type(raw).__name__)
    return out


def _waypoint_from_raw(row: Any) -> Waypoint | None:
    if not isinstance(row, dict):
        return None
    try:
        coords = Coordinate(lat=float(row["lat"]), lng=float(row["lng"]))
        waypoint = Waypoint(
            waypoint_id=str(row["id"]),
            name=str(row["name"]),
            coords=coords,
            created_ms=int(row.get("created_ms", 0) or 0),
            note=(str(row["note"]) if row.get("note") else None),
        )
    except (KeyError, TypeError, ValueError):
        return None
    return waypoint if coords.is_finite else None


def _waypoint_to_raw(w: Waypoint) -> dict[str, Any]:
    return {
        "id": w.waypoint_id,
        "name": w.name,
        "lat": w.coords.lat,
        "lng": w.coords.lng,
        "created_ms": w.created_ms,
        "note": w.note,
    }


class JsonStateStore:
    """Completion flags and waypoints persisted to a JSON file (atomic-ish writes)."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._data: dict[str, Any] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Load state from disk (no-op if file not exists)."""

        if self._loaded:
            return
        self._data = {}
        if not self._path.exists():
            self._loaded = True
            return
        blob = self._path.read_bytes()
        self._loaded = True
        if not blob.strip():
            return
        try:
            raw = json.loads(blob.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            # State file corrupted: keep a backup and start fresh
            backup = self._path.with_suffix(self._path.suffix + ".broken")
            backup.write_bytes(blob)
            logger.warning("state file %s is not valid JSON, backed up to %s", self._path, backup)
            return
        if isinstance(raw, list):
            self._data = {"completed": _completion_from_raw(raw)}
        elif isinstance(raw, dict):
            self._data = raw
        else:
            logger.warning("state file %s has unexpected shape, using defaults", self._path)

    def flush(self) -> None:
        """Persist state to disk."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)

    def load_completion_state(self) -> dict[str, bool]:
        self.load()
        return _completion_from_raw(self._data.get("completed", {}))

    def save_completion_state(self, mapping: Mapping[str, bool]) -> None:
        self.load()
        self._data["completed"] = {str(k): bool(v) for k, v in mapping.items()}
        self.flush()

    def load_waypoints(self) -> list[Waypoint]:
        self.load()
        rows = self._data.get("waypoints", [])
        if not isinstance(rows, list):
            logger.warning("ignoring waypoints of unexpected type %s", type(rows).__name__)
            return []
        waypoints = [_waypoint_from_raw(r) for r in rows]
        skipped = sum(1 for w in waypoints if w is None)
        if skipped:
            logger.warning("skipped %s malformed saved waypoints", skipped)
        return [w for w in waypoints if w is not None]

    def save_waypoints(self, waypoints: Iterable[Waypoint]) -> None:
        self.load()
        self._data["waypoints"] = [_waypoint_to_raw(w) for w in waypoints]
        self.flush()

    def add_waypoint(self, waypoint: Waypoint) -> None:
        current = [w for w in self.load_waypoints() if w.waypoint_id != waypoint.waypoint_id]
        self.save_waypoints([*current, waypoint])

    def remove_waypoint(self, waypoint_id: str) -> None:
        self.save_waypoints([w for w in self.load_waypoints() if w.waypoint_id != waypoint_id])
