from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

import streamlit as st

from port_day.deck import build_deck
from port_day.engine import EngineConfig, TrackingEngine
from port_day.geocode import NominatimConfig, NominatimPlaceLookup
from port_day.itinerary import load_port_call
from port_day.models import Coordinate, Lifecycle
from port_day.overlay import waypoint_key
from port_day.search import SearchParams
from port_day.sources import ClockSource, GeoSource, OrientationSource
from port_day.spatial import SpatialParams
from port_day.store import JsonStateStore
from port_day.surface import RecordingSurface
from port_day.timeutils import (
    dt_from_epoch_ms,
    format_countdown,
    format_duration,
    format_minutes,
    now_local,
    tzinfo_from_name,
)

DEFAULT_ITINERARY = "data/port_call_florence.json"

_STATE_ICONS = {
    Lifecycle.UPCOMING: "⏳ upcoming",
    Lifecycle.ACTIVE: "▶ now",
    Lifecycle.COMPLETED: "✅ done",
    Lifecycle.ELAPSED_INCOMPLETE: "⚠ missed",
}


class _Session:
    """Everything that must survive Streamlit reruns for one itinerary/state pair."""

    def __init__(self, itinerary: str, state: str, near_m: float, use_external: bool) -> None:
        self.key = (itinerary, state, near_m, use_external)
        self.port_call = load_port_call(itinerary)
        self.simulated: datetime | None = None
        self.clock = ClockSource(self._now)
        self.geo = GeoSource()
        self.orientation = OrientationSource()
        self.surface = RecordingSurface(self.port_call.center)
        lookup = NominatimPlaceLookup(NominatimConfig()) if use_external else None
        self.engine = TrackingEngine(
            self.port_call,
            JsonStateStore(state),
            self.surface,
            clock=self.clock,
            geo=self.geo,
            orientation=self.orientation,
            lookup=lookup,
            config=EngineConfig(
                spatial=SpatialParams(near_threshold_m=near_m),
                search=SearchParams(debounce_seconds=0.0),
            ),
        ).start()

    def _now(self) -> datetime:
        return self.simulated or now_local(self.port_call.tz_name)


def _session(itinerary: str, state: str, near_m: float, use_external: bool) -> _Session:
    key = (itinerary, state, near_m, use_external)
    current: _Session | None = st.session_state.get("port_day")
    if current is not None and current.key == key:
        return current
    if current is not None:
        current.engine.close()
    current = _Session(itinerary, state, near_m, use_external)
    st.session_state["port_day"] = current
    return current


def main() -> None:
    st.set_page_config(page_title="Port day: shore itinerary", layout="wide")

    with st.sidebar:
        st.subheader("Itinerary")
        itinerary = st.text_input("Itinerary JSON", value=DEFAULT_ITINERARY)
        state = st.text_input("Saved state JSON", value="port_day_state.json")
        near_m = st.number_input("'Near' radius (m)", value=300.0, step=50.0)
        use_external = st.checkbox("Search OpenStreetMap too", value=False)

        if not Path(itinerary).exists():
            st.error(f"Itinerary not found: {itinerary!r}")
            return
        try:
            sess = _session(itinerary, state, float(near_m), use_external)
        except (KeyError, ValueError) as exc:
            st.exception(exc)
            return
        engine = sess.engine

        st.subheader("Clock")
        simulate = st.checkbox("Simulate time of day", value=False)
        previous = sess.simulated
        if simulate:
            at = st.time_input("Time", value=datetime.strptime("10:00", "%H:%M").time(), step=300)
            sess.simulated = datetime.combine(sess.port_call.day, at, tzinfo=tzinfo_from_name(sess.port_call.tz_name))
        else:
            sess.simulated = None
        # the tracker refuses earlier clock values, so a mode switch or a step back starts it over
        if (previous is None) != (sess.simulated is None) or (
            previous is not None and sess.simulated is not None and sess.simulated < previous
        ):
            engine.reset_timeline()

        st.subheader("Position")
        have_fix = st.checkbox("I know where I am", value=False)
        center = sess.port_call.center
        lat = st.number_input("Latitude", value=center.lat, format="%.6f")
        lng = st.number_input("Longitude", value=center.lng, format="%.6f")
        heading = st.slider("Compass heading", 0, 359, 0)

        st.subheader("Map")
        satellite = st.toggle("Satellite", value=engine.satellite)

    sess.clock.tick()
    if have_fix:
        sess.geo.push_fix(float(lat), float(lng))
        sess.orientation.push_heading(float(heading))
    else:
        sess.geo.lose_fix()
        sess.orientation.push_heading(None)
    if satellite != engine.satellite:
        engine.set_satellite(satellite)

    view = engine.view()
    timeline = view.timeline

    st.title(sess.port_call.name or "Port day")
    c1, c2, c3 = st.columns(3)
    if view.all_aboard_in is not None:
        c1.metric("All aboard in", format_countdown(view.all_aboard_in))
    else:
        c1.metric("All aboard", "passed" if sess.port_call.all_aboard else "-")
    active = timeline.active if timeline is not None else ()
    c2.metric("Now", engine.schedule.get(active[0]).title if active else "-")
    upcoming = timeline.next_upcoming if timeline is not None else None
    c3.metric("Next", engine.schedule.get(upcoming).title if upcoming else "-")

    left, right = st.columns([3, 2])

    with left:
        st.subheader("Timeline")
        rows: list[dict[str, object]] = []
        for activity in engine.schedule:
            timing = timeline.timing(activity.activity_id) if timeline is not None else None
            gap = timeline.gap_before(activity.activity_id) if timeline is not None else None
            rel = view.relations.get(activity.activity_id)
            rows.append(
                {
                    "time": f"{activity.start:%H:%M}-{activity.end:%H:%M}",
                    "activity": activity.title,
                    "state": _STATE_ICONS[timing.state] if timing is not None else "",
                    "progress": timing.progress if timing is not None else 0.0,
                    "length": format_duration(activity.start, activity.end),
                    "free before": format_minutes(gap.minutes) if gap is not None and gap.minutes else "",
                    "distance": rel.distance_text if rel is not None else "",
                    "arrow": f"{rel.pointing_deg:.0f}°" if rel is not None else "",
                    "near": bool(rel.near) if rel is not None else False,
                }
            )
        st.dataframe(
            rows,
            use_container_width=True,
            hide_index=True,
            column_config={
                "progress": st.column_config.ProgressColumn("progress", min_value=0, max_value=100, format="%.0f%%"),
            },
        )

        ids = [a.activity_id for a in engine.schedule]
        picked = st.selectbox("Activity", ids, format_func=lambda i: engine.schedule.get(i).title)
        b1, b2 = st.columns(2)
        if b1.button("Toggle completed", use_container_width=True):
            engine.toggle_complete(picked)
            st.rerun()
        if b2.button("Locate on map", use_container_width=True):
            engine.locate(picked)

        st.subheader("Search")
        query = st.text_input("Find a place", value="")
        if len(query.strip()) >= SearchParams().min_query_length:
            with st.spinner("Searching ..."):
                results = asyncio.run(engine.search.search_once(query))
            if engine.search.external_failed:
                st.warning("OpenStreetMap search is unavailable, showing itinerary matches only.")
            for i, r in enumerate(results):
                label = f"{r.label} · {r.detail}" if r.detail else r.label
                if st.button(label, key=f"search-{i}"):
                    engine.select_search_result(r)

    with right:
        st.subheader("Map")
        st.pydeck_chart(build_deck(sess.surface, satellite=engine.satellite), use_container_width=True)

        with st.expander("My places", expanded=False):
            with st.form("new-waypoint", clear_on_submit=True):
                wp_name = st.text_input("Name")
                wp_note = st.text_input("Note")
                wp_lat = st.number_input("Latitude", value=sess.surface.center.lat, format="%.6f")
                wp_lng = st.number_input("Longitude", value=sess.surface.center.lng, format="%.6f")
                if st.form_submit_button("Save place"):
                    engine.overlay.handle_map_tap(Coordinate(lat=float(wp_lat), lng=float(wp_lng)))
                    try:
                        engine.overlay.confirm_waypoint(wp_name, wp_note)
                    except ValueError as exc:
                        engine.overlay.cancel_waypoint()
                        st.error(str(exc))
            for w in engine.waypoints:
                cols = st.columns([4, 1])
                saved_at = dt_from_epoch_ms(w.created_ms, sess.port_call.tz_name)
                cols[0].write(f"**{w.name}** ({saved_at:%H:%M})" + (f" · {w.note}" if w.note else ""))
                if cols[1].button("Delete", key=f"del-{w.waypoint_id}"):
                    sess.surface.click_popup_button(waypoint_key(w.waypoint_id), "delete")
                    st.rerun()

    st.caption(
        "Times are local to the port. Distances are straight-line; the arrow is relative to your compass heading."
    )


if __name__ == "__main__":
    main()
