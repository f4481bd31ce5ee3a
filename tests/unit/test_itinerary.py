"""
Unit tests for itinerary loading and the in-memory schedule.
"""

import json
from datetime import date, time

import pytest

from port_day.itinerary import Schedule, activity_from_row, load_port_call, parse_port_call
from port_day.models import ActivityKind, Coordinate

ROW = {
    "id": "uffizi",
    "title": "Uffizi Gallery",
    "start": "13:00",
    "end": "15:00",
    "location": "Piazzale degli Uffizi",
    "lat": 43.7678,
    "lng": 11.2553,
}


def document(*rows, **extra):
    raw = {"date": "2025-05-14", "timezone": "Europe/Rome", "activities": list(rows or [ROW])}
    raw.update(extra)
    return raw


class TestActivityFromRow:
    """Tests for single-row conversion."""

    @pytest.mark.unit
    def test_defaults(self):
        a = activity_from_row(ROW)
        assert a.activity_id == "uffizi"
        assert a.start == time(13, 0)
        assert a.coords == Coordinate(43.7678, 11.2553)
        assert a.kind is ActivityKind.SIGHTSEEING
        assert a.completed is False
        assert a.critical is False
        assert a.end_coords is None

    @pytest.mark.unit
    def test_notes_critical_marks_critical(self):
        assert activity_from_row({**ROW, "notes": "CRITICAL"}).critical is True

    @pytest.mark.unit
    def test_end_location(self):
        a = activity_from_row({**ROW, "end_location": "Ponte Vecchio", "end_lat": 43.7680, "end_lng": 11.2531})
        assert a.end_location_name == "Ponte Vecchio"
        assert a.end_coords == Coordinate(43.7680, 11.2531)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "patch, error",
        [
            ({"start": "1pm"}, ValueError),
            ({"type": "shopping"}, ValueError),
            ({"lat": "nan"}, ValueError),
        ],
    )
    def test_invalid_values(self, patch, error):
        with pytest.raises(error):
            activity_from_row({**ROW, **patch})

    @pytest.mark.unit
    def test_missing_field(self):
        row = dict(ROW)
        del row["title"]
        with pytest.raises(KeyError):
            activity_from_row(row)


class TestParsePortCall:
    """Tests for whole-document parsing."""

    @pytest.mark.unit
    @pytest.mark.parametrize("missing", ["date", "activities"])
    def test_missing_required_key(self, missing):
        raw = document()
        del raw[missing]
        with pytest.raises(KeyError, match="missing required keys"):
            parse_port_call(raw)

    @pytest.mark.unit
    def test_bad_date(self):
        with pytest.raises(ValueError, match="YYYY-MM-DD"):
            parse_port_call(document(date="14/05/2025"))

    @pytest.mark.unit
    def test_malformed_rows_skipped(self, caplog):
        """Test that a broken activity, point or track pair is skipped with a warning."""
        broken = {"id": "broken", "title": "No times"}
        raw = document(
            ROW,
            broken,
            points=[{"name": "Ok", "lat": 43.0, "lng": 11.0}, {"name": "No coords"}],
            track=[[43.0, 11.0], [43.1]],
        )
        with caplog.at_level("WARNING"):
            pc = parse_port_call(raw)
        assert [a.activity_id for a in pc.schedule] == ["uffizi"]
        assert [p.name for p in pc.fixed_points] == ["Ok"]
        assert pc.track == (Coordinate(43.0, 11.0),)
        assert "skipping malformed activity 'broken'" in caplog.text
        assert "3 malformed rows skipped" in caplog.text

    @pytest.mark.unit
    def test_optional_times(self):
        pc = parse_port_call(document(all_aboard="17:30"))
        assert pc.all_aboard == time(17, 30)
        assert pc.departure is None

    @pytest.mark.unit
    def test_unordered_schedule_rejected(self):
        early = {**ROW, "id": "early", "start": "09:00", "end": "10:00"}
        with pytest.raises(ValueError, match="not ordered"):
            parse_port_call(document(ROW, early))


class TestLoadPortCall:
    """Tests for the bundled sample itinerary."""

    @pytest.mark.unit
    def test_sample_file(self, sample_itinerary_path):
        pc = load_port_call(sample_itinerary_path)
        assert pc.day == date(2025, 5, 14)
        assert pc.tz_name == "Europe/Rome"
        assert len(pc.schedule) == 8
        assert pc.schedule.get("train-back").critical is True
        assert pc.schedule.get("all-aboard").critical is True
        assert pc.schedule.get("train-out").end_coords == Coordinate(43.7764, 11.2480)
        assert pc.all_aboard == time(17, 30)
        assert pc.departure == time(18, 0)
        assert len(pc.fixed_points) == 5

    @pytest.mark.unit
    def test_non_object_document(self, tmp_path):
        path = tmp_path / "itinerary.json"
        path.write_text(json.dumps([ROW]), encoding="utf-8")
        with pytest.raises(ValueError, match="must be a JSON object"):
            load_port_call(path)


class TestSchedule:
    """Tests for schedule ordering and completion flags."""

    @pytest.mark.unit
    def test_duplicate_ids_rejected(self, make_activity):
        with pytest.raises(ValueError, match="duplicate activity ids"):
            Schedule([make_activity("a", "09:00", "10:00"), make_activity("a", "10:00", "11:00")])

    @pytest.mark.unit
    def test_equal_starts_allowed(self, make_activity):
        s = Schedule([make_activity("a", "09:00", "10:00"), make_activity("b", "09:00", "09:30")])
        assert len(s) == 2

    @pytest.mark.unit
    def test_toggle(self, activities):
        s = Schedule(activities)
        assert s.toggle("lunch").completed is True
        assert s.get("lunch").completed is True
        assert s.toggle("lunch").completed is False
        assert [a.activity_id for a in s] == ["museum", "lunch", "train"]

    @pytest.mark.unit
    def test_unknown_id(self, activities):
        with pytest.raises(KeyError):
            Schedule(activities).toggle("nope")

    @pytest.mark.unit
    def test_apply_completion_ignores_unknown_ids(self, activities):
        s = Schedule(activities)
        s.apply_completion({"museum": True, "gone": True})
        assert s.completion_state() == {"museum": True, "lunch": False, "train": False}


class TestPortCallGeometry:
    """Tests for the region and center derived from the map content."""

    @pytest.mark.unit
    def test_region_covers_everything(self, port_call):
        box = port_call.region
        for c in [a.coords for a in port_call.schedule] + list(port_call.track):
            assert box.contains(c)

    @pytest.mark.unit
    def test_center_inside_region(self, port_call):
        assert port_call.region.contains(port_call.center)
