"""Command-line interface for port_day.

Run:
    python -m port_day status --itinerary data/port_call_florence.json --at 10:00 --lat 43.7731 --lng 11.2560
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable

from port_day.engine import EngineConfig, TrackingEngine, TrackingView
from port_day.itinerary import PortCall, load_port_call
from port_day.models import DEFAULT_TICK_SECONDS, Coordinate, Lifecycle
from port_day.search import SearchParams
from port_day.sources import ClockSource, GeoSource, OrientationSource
from port_day.spatial import SpatialParams
from port_day.store import JsonStateStore
from port_day.surface import RecordingSurface
from port_day.timeutils import (
    countdown_to,
    format_countdown,
    format_duration,
    format_minutes,
    now_local,
    parse_hhmm,
    tzinfo_from_name,
)

DEFAULT_ITINERARY = str(Path(__file__).resolve().parent.parent / "data" / "port_call_florence.json")
DEFAULT_STATE = "port_day_state.json"

_STATE_LABELS = {
    Lifecycle.UPCOMING: "upcoming",
    Lifecycle.ACTIVE: "ACTIVE",
    Lifecycle.COMPLETED: "done",
    Lifecycle.ELAPSED_INCOMPLETE: "missed",
}


def _clock_for(args: argparse.Namespace, port_call: PortCall) -> Callable[[], datetime]:
    """Wall clock, or a fixed time on the itinerary day when ``--at`` is given."""

    if getattr(args, "at", None):
        fixed = datetime.combine(port_call.day, parse_hhmm(args.at), tzinfo=tzinfo_from_name(port_call.tz_name))
        return lambda: fixed
    return lambda: now_local(port_call.tz_name)


def _build_engine(args: argparse.Namespace) -> tuple[TrackingEngine, ClockSource, GeoSource, OrientationSource]:
    port_call = load_port_call(args.itinerary)
    clock = ClockSource(_clock_for(args, port_call), period_seconds=getattr(args, "period", DEFAULT_TICK_SECONDS))
    geo = GeoSource()
    orientation = OrientationSource()
    lookup = None
    if getattr(args, "external", False):
        from port_day.geocode import NominatimConfig, NominatimPlaceLookup

        lookup = NominatimPlaceLookup(NominatimConfig(accept_language=args.lang, user_agent=args.user_agent))
    config = EngineConfig(
        spatial=SpatialParams(near_threshold_m=getattr(args, "near_m", SpatialParams().near_threshold_m)),
        search=SearchParams(debounce_seconds=0.0),
    )
    try:
        center = port_call.center
    except ValueError:
        center = Coordinate(lat=0.0, lng=0.0)
    surface = RecordingSurface(center)
    engine = TrackingEngine(
        port_call,
        JsonStateStore(args.state),
        surface,
        clock=clock,
        geo=geo,
        orientation=orientation,
        lookup=lookup,
        config=config,
    )
    return engine, clock, geo, orientation


def _print_view(engine: TrackingEngine, view: TrackingView) -> None:
    if view.now is not None:
        print(f"now={view.now.isoformat(sep=' ', timespec='minutes')}")
    if view.all_aboard_in is not None:
        print(f"all aboard in {format_countdown(view.all_aboard_in)}")
    if view.position is not None:
        heading = "n/a" if view.heading is None else f"{view.heading:.0f}°"
        print(f"position={view.position.lat:.5f},{view.position.lng:.5f} heading={heading}")
    print()

    timeline = view.timeline
    for activity in engine.schedule:
        gap = timeline.gap_before(activity.activity_id) if timeline is not None else None
        if gap is not None and gap.minutes > 0:
            print(f"    ... {format_minutes(gap.minutes)} free ({gap.progress:.0f}%)")
        timing = timeline.timing(activity.activity_id) if timeline is not None else None
        state = _STATE_LABELS[timing.state] if timing is not None else "-"
        progress = f"{timing.progress:5.1f}%" if timing is not None else "     -"
        line = (
            f"{activity.start:%H:%M}-{activity.end:%H:%M} [{state:>8}] {progress} "
            f"{activity.title} ({format_duration(activity.start, activity.end)})"
        )
        rel = view.relations.get(activity.activity_id)
        if rel is not None:
            line += f"  {rel.distance_text} @ {rel.pointing_deg:.0f}°"
            if rel.near:
                line += " NEAR"
        print(line)


def _cmd_status(args: argparse.Namespace) -> int:
    engine, clock, geo, orientation = _build_engine(args)
    with engine:
        clock.tick()
        if args.lat is not None and args.lng is not None:
            geo.push_fix(args.lat, args.lng)
        if args.heading is not None:
            orientation.push_heading(args.heading)
        _print_view(engine, engine.view())
    return 0


def _cmd_watch(args: argparse.Namespace) -> int:
    engine, clock, _, _ = _build_engine(args)

    def show(_now: datetime) -> None:
        _print_view(engine, engine.view())
        print("-" * 40, flush=True)

    with engine:
        sub = clock.subscribe(show)
        try:
            asyncio.run(clock.run(ticks=args.ticks))
        except KeyboardInterrupt:
            print("\nstopped", file=sys.stderr)
        finally:
            sub.cancel()
    return 0


def _cmd_toggle(args: argparse.Namespace) -> int:
    engine, _, _, _ = _build_engine(args)
    with engine:
        activity = engine.toggle_complete(args.activity_id)
    print(f"{activity.activity_id}: {'completed' if activity.completed else 'not completed'}")
    return 0


def _cmd_countdown(args: argparse.Namespace) -> int:
    port_call = load_port_call(args.itinerary)
    if port_call.all_aboard is None:
        print("itinerary has no all-aboard time", file=sys.stderr)
        return 1
    left = countdown_to(_clock_for(args, port_call)(), port_call.all_aboard)
    if left is None:
        print(f"all aboard was at {port_call.all_aboard:%H:%M}")
    else:
        print(f"all aboard at {port_call.all_aboard:%H:%M}: {format_countdown(left)}")
    return 0


def _cmd_search(args: argparse.Namespace) -> int:
    engine, _, _, _ = _build_engine(args)
    with engine:
        results = asyncio.run(engine.search.search_once(args.query))
        failed = engine.search.external_failed
    if failed:
        print("external lookup failed; showing local matches only", file=sys.stderr)
    if not results:
        print("no matches")
        return 0
    for r in results:
        detail = f" ({r.detail})" if r.detail else ""
        print(f"[{r.origin.value}] {r.label}{detail}  {r.coords.lat:.5f},{r.coords.lng:.5f}")
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--itinerary", type=str, default=DEFAULT_ITINERARY, help="itinerary JSON path")
    p.add_argument("--state", type=str, default=DEFAULT_STATE, help="saved completion/waypoint state (JSON)")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="port_day")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_st = sub.add_parser("status", help="timeline state, gaps and distances at one moment")
    _add_common(p_st)
    p_st.add_argument("--at", type=str, default=None, help="time of day HH:MM on the itinerary day (default: now)")
    p_st.add_argument("--lat", type=float, default=None, help="current latitude")
    p_st.add_argument("--lng", type=float, default=None, help="current longitude")
    p_st.add_argument("--heading", type=float, default=None, help="compass heading in degrees")
    p_st.add_argument("--near-m", type=float, default=SpatialParams().near_threshold_m, help="'near' radius (meters)")
    p_st.set_defaults(func=_cmd_status)

    p_w = sub.add_parser("watch", help="print the timeline on every clock tick")
    _add_common(p_w)
    p_w.add_argument("--period", type=float, default=DEFAULT_TICK_SECONDS, help="seconds between ticks")
    p_w.add_argument("--ticks", type=int, default=None, help="stop after N ticks (default: run until Ctrl-C)")
    p_w.set_defaults(func=_cmd_watch)

    p_t = sub.add_parser("toggle", help="flip an activity's completed flag")
    _add_common(p_t)
    p_t.add_argument("activity_id", type=str)
    p_t.set_defaults(func=_cmd_toggle)

    p_c = sub.add_parser("countdown", help="time left until all aboard")
    _add_common(p_c)
    p_c.add_argument("--at", type=str, default=None, help="time of day HH:MM (default: now)")
    p_c.set_defaults(func=_cmd_countdown)

    p_s = sub.add_parser("search", help="search the schedule, route points, your places and OpenStreetMap")
    _add_common(p_s)
    p_s.add_argument("query", type=str)
    p_s.add_argument("--external", action="store_true", help="also query Nominatim (OpenStreetMap)")
    p_s.add_argument("--lang", type=str, default="en", help="Nominatim accept-language")
    p_s.add_argument(
        "--user-agent",
        type=str,
        default="port-day/0.1.0 (place-search; set your own UA)",
        help="HTTP User-Agent (use your own identifier)",
    )
    p_s.set_defaults(func=_cmd_search)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except (KeyError, ValueError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
