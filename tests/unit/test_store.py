"""Tests for port_day/store.py - completion flag and waypoint persistence."""

import json

import pytest

from port_day.models import Coordinate, Waypoint
from port_day.store import JsonStateStore

GELATO = Waypoint(waypoint_id="w1", name="Gelato", coords=Coordinate(43.7685, 11.2610), created_ms=5, note="pistachio")
BAKERY = Waypoint(waypoint_id="w2", name="Bakery", coords=Coordinate(43.7700, 11.2500), created_ms=6)


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state.json"


class TestCompletionState:
    """Test completion flag persistence."""

    @pytest.mark.unit
    def test_missing_file_is_empty(self, state_path):
        assert JsonStateStore(state_path).load_completion_state() == {}

    @pytest.mark.unit
    def test_empty_file_is_empty(self, state_path):
        state_path.write_text("  \n", encoding="utf-8")
        assert JsonStateStore(state_path).load_completion_state() == {}

    @pytest.mark.unit
    def test_saved_flags_reload(self, state_path):
        JsonStateStore(state_path).save_completion_state({"museum": True, "lunch": False})
        assert JsonStateStore(state_path).load_completion_state() == {"museum": True, "lunch": False}

    @pytest.mark.unit
    def test_no_temp_file_left_behind(self, state_path):
        JsonStateStore(state_path).save_completion_state({"museum": True})
        assert [p.name for p in state_path.parent.iterdir()] == ["state.json"]

    @pytest.mark.unit
    def test_legacy_list_form(self, state_path):
        """Test that a saved full itinerary list still restores its completion flags."""
        state_path.write_text(
            json.dumps(
                [
                    {"id": "museum", "title": "Cathedral Museum", "completed": True},
                    {"id": "lunch", "completed": False},
                    {"title": "no id", "completed": True},
                ]
            ),
            encoding="utf-8",
        )
        assert JsonStateStore(state_path).load_completion_state() == {"museum": True, "lunch": False}

    @pytest.mark.unit
    def test_non_bool_values_ignored(self, state_path):
        state_path.write_text(json.dumps({"completed": {"museum": "yes", "lunch": True, "x": 1}}), encoding="utf-8")
        assert JsonStateStore(state_path).load_completion_state() == {"lunch": True}

    @pytest.mark.unit
    def test_corrupted_file_backed_up(self, state_path, caplog):
        """Test that invalid JSON falls back to defaults and keeps a .broken copy."""
        state_path.write_text('{"completed": {"museum": tr', encoding="utf-8")
        with caplog.at_level("WARNING"):
            flags = JsonStateStore(state_path).load_completion_state()
        assert flags == {}
        backup = state_path.with_name("state.json.broken")
        assert backup.read_text(encoding="utf-8") == '{"completed": {"museum": tr'
        assert "not valid JSON" in caplog.text

    @pytest.mark.unit
    def test_undecodable_bytes_backed_up(self, state_path, caplog):
        """Test that a file that is not UTF-8 at all is treated like any other broken file."""
        blob = b'{"completed": {"museum": tr\xff\xfe}}'
        state_path.write_bytes(blob)
        store = JsonStateStore(state_path)
        with caplog.at_level("WARNING"):
            assert store.load_completion_state() == {}
        backup = state_path.with_name("state.json.broken")
        assert backup.read_bytes() == blob
        assert "not valid JSON" in caplog.text

        store.save_completion_state({"lunch": True})
        assert json.loads(state_path.read_text(encoding="utf-8"))["completed"] == {"lunch": True}
        assert backup.read_bytes() == blob

    @pytest.mark.unit
    def test_unreadable_file_can_be_retried(self, state_path):
        """Test that a failed read leaves the store unloaded so the next call reads again."""
        state_path.mkdir()
        store = JsonStateStore(state_path)
        with pytest.raises(OSError):
            store.load_completion_state()
        state_path.rmdir()
        state_path.write_text(json.dumps({"completed": {"museum": True}}), encoding="utf-8")
        assert store.load_completion_state() == {"museum": True}

    @pytest.mark.unit
    def test_unexpected_shape(self, state_path, caplog):
        state_path.write_text("42", encoding="utf-8")
        with caplog.at_level("WARNING"):
            assert JsonStateStore(state_path).load_completion_state() == {}
        assert "unexpected shape" in caplog.text

    @pytest.mark.unit
    def test_save_keeps_waypoints(self, state_path):
        store = JsonStateStore(state_path)
        store.save_waypoints([GELATO])
        store.save_completion_state({"museum": True})
        assert JsonStateStore(state_path).load_waypoints() == [GELATO]


class TestWaypoints:
    """Test user waypoint persistence."""

    @pytest.mark.unit
    def test_add_and_remove(self, state_path):
        store = JsonStateStore(state_path)
        store.add_waypoint(GELATO)
        store.add_waypoint(BAKERY)
        assert JsonStateStore(state_path).load_waypoints() == [GELATO, BAKERY]
        store.remove_waypoint("w1")
        assert JsonStateStore(state_path).load_waypoints() == [BAKERY]

    @pytest.mark.unit
    def test_add_same_id_replaces(self, state_path):
        store = JsonStateStore(state_path)
        store.add_waypoint(GELATO)
        store.add_waypoint(Waypoint(waypoint_id="w1", name="Gelato 2", coords=GELATO.coords, created_ms=9))
        assert [w.name for w in store.load_waypoints()] == ["Gelato 2"]

    @pytest.mark.unit
    def test_malformed_rows_skipped(self, state_path, caplog):
        state_path.write_text(
            json.dumps(
                {
                    "waypoints": [
                        {"id": "w1", "name": "Gelato", "lat": 43.7685, "lng": 11.2610, "created_ms": 5, "note": "pistachio"},
                        {"id": "w3", "name": "No coords"},
                        {"id": "w4", "name": "Bad", "lat": "north", "lng": 11.0},
                        {"id": "w5", "name": "Inf", "lat": 1e999, "lng": 11.0},
                        "junk",
                    ]
                }
            ),
            encoding="utf-8",
        )
        with caplog.at_level("WARNING"):
            assert JsonStateStore(state_path).load_waypoints() == [GELATO]
        assert "4 malformed" in caplog.text

    @pytest.mark.unit
    def test_waypoints_of_wrong_type(self, state_path):
        state_path.write_text(json.dumps({"waypoints": {"w1": {}}}), encoding="utf-8")
        assert JsonStateStore(state_path).load_waypoints() == []
