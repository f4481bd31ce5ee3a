"""
Unit tests for the temporal state calculator (port_day/timeline.py).
"""

from dataclasses import replace
from datetime import date, time

import pytest

from port_day.models import Lifecycle
from port_day.timeline import (
    TemporalTracker,
    compute_timeline,
    gap_minutes,
    lifecycle,
    window_progress,
)

H = 3600.0


class TestWindowProgress:
    """Tests for linear progress through a window."""

    @pytest.mark.unit
    def test_halfway(self):
        """Test 50% at 10:00 for a 09:00-11:00 window."""
        assert window_progress(10 * H, time(9, 0), time(11, 0)) == pytest.approx(50.0)

    @pytest.mark.unit
    def test_before_start(self):
        assert window_progress(8 * H, time(9, 0), time(11, 0)) == 0.0

    @pytest.mark.unit
    def test_at_start(self):
        assert window_progress(9 * H, time(9, 0), time(11, 0)) == 0.0

    @pytest.mark.unit
    def test_at_and_after_end(self):
        assert window_progress(11 * H, time(9, 0), time(11, 0)) == 100.0
        assert window_progress(15 * H, time(9, 0), time(11, 0)) == 100.0

    @pytest.mark.unit
    def test_zero_length_window(self):
        """Test that an empty window jumps from 0 to 100 without dividing by zero."""
        assert window_progress(9 * H - 1, time(9, 0), time(9, 0)) == 0.0
        assert window_progress(9 * H, time(9, 0), time(9, 0)) == 100.0

    @pytest.mark.unit
    def test_wraps_past_midnight(self):
        """Test a 23:00-01:00 window read at midnight (24h on the anchored clock)."""
        assert window_progress(24 * H, time(23, 0), time(1, 0)) == pytest.approx(50.0)


class TestLifecycle:
    """Tests for the four discrete activity states."""

    @pytest.mark.unit
    def test_upcoming(self, make_activity):
        assert lifecycle(make_activity("a", "09:00", "11:00"), 8 * H) is Lifecycle.UPCOMING

    @pytest.mark.unit
    def test_active_including_start(self, make_activity):
        a = make_activity("a", "09:00", "11:00")
        assert lifecycle(a, 9 * H) is Lifecycle.ACTIVE
        assert lifecycle(a, 10 * H) is Lifecycle.ACTIVE

    @pytest.mark.unit
    def test_end_is_exclusive(self, make_activity):
        assert lifecycle(make_activity("a", "09:00", "11:00"), 11 * H) is Lifecycle.ELAPSED_INCOMPLETE

    @pytest.mark.unit
    def test_elapsed_incomplete(self, make_activity):
        """Test that an unfinished activity at 11:30 is elapsed-incomplete, not completed."""
        assert lifecycle(make_activity("a", "09:00", "11:00"), 11.5 * H) is Lifecycle.ELAPSED_INCOMPLETE

    @pytest.mark.unit
    def test_completion_flag_wins(self, make_activity):
        """Test that the user's completion flag overrides time-derived state."""
        a = make_activity("a", "09:00", "11:00", completed=True)
        assert lifecycle(a, 8 * H) is Lifecycle.COMPLETED
        assert lifecycle(a, 10 * H) is Lifecycle.COMPLETED
        assert lifecycle(a, 12 * H) is Lifecycle.COMPLETED


class TestGaps:
    """Tests for idle intervals between consecutive activities."""

    @pytest.mark.unit
    def test_gap_minutes(self, make_activity):
        assert gap_minutes(make_activity("a", "09:00", "11:00"), make_activity("b", "11:30", "12:00")) == 30

    @pytest.mark.unit
    def test_overlap_is_zero(self, make_activity):
        assert gap_minutes(make_activity("a", "09:00", "11:00"), make_activity("b", "10:30", "12:00")) == 0

    @pytest.mark.unit
    def test_gap_progress(self, activities):
        snap = compute_timeline(activities, 11.25 * H)
        gap = snap.gap_before("lunch")
        assert gap.after_id == "museum"
        assert gap.minutes == 30
        assert gap.progress == pytest.approx(50.0)

    @pytest.mark.unit
    def test_zero_gap_has_no_progress(self, make_activity):
        acts = [make_activity("a", "09:00", "11:00"), make_activity("b", "10:30", "12:00")]
        snap = compute_timeline(acts, 11.5 * H)
        assert snap.gaps[0].minutes == 0
        assert snap.gaps[0].progress == 0.0


class TestComputeTimeline:
    """Tests for the whole-schedule snapshot."""

    @pytest.mark.unit
    def test_states_at_ten(self, activities):
        snap = compute_timeline(activities, 10 * H)
        assert [t.state for t in snap.activities] == [Lifecycle.ACTIVE, Lifecycle.UPCOMING, Lifecycle.UPCOMING]
        assert snap.active == ("museum",)
        assert snap.next_upcoming == "lunch"
        assert snap.timing("museum").progress == pytest.approx(50.0)
        assert snap.timing("museum").duration_minutes == 120

    @pytest.mark.unit
    def test_order_preserved(self, activities):
        snap = compute_timeline(activities, 0.0)
        assert [t.activity_id for t in snap.activities] == ["museum", "lunch", "train"]
        assert len(snap.gaps) == 2

    @pytest.mark.unit
    def test_unknown_ids(self, activities):
        snap = compute_timeline(activities, 0.0)
        assert snap.timing("nope") is None
        assert snap.gap_before("museum") is None


class TestTemporalTracker:
    """Tests for clock-driven recomputation."""

    @pytest.mark.unit
    def test_tick(self, activities, at):
        tracker = TemporalTracker(date(2025, 5, 14))
        snap = tracker.tick(at("10:00"), activities)
        assert snap.timing("museum").state is Lifecycle.ACTIVE
        assert tracker.last_now == at("10:00")

    @pytest.mark.unit
    def test_rollback_ignored(self, activities, at):
        """Test that a clock going backwards keeps the previous timeline."""
        tracker = TemporalTracker(date(2025, 5, 14))
        first = tracker.tick(at("10:00"), activities)
        again = tracker.tick(at("09:00"), activities)
        assert again is first
        assert tracker.last_now == at("10:00")

    @pytest.mark.unit
    def test_after_midnight_everything_elapsed(self, activities, at):
        """Test that a tick on the next day does not restart the schedule."""
        tracker = TemporalTracker(date(2025, 5, 14))
        snap = tracker.tick(at("00:30", day=date(2025, 5, 15)), activities)
        assert all(t.state is Lifecycle.ELAPSED_INCOMPLETE for t in snap.activities)

    @pytest.mark.unit
    def test_day_defaults_to_first_tick(self, activities, at):
        tracker = TemporalTracker()
        snap = tracker.tick(at("12:00"), activities)
        assert snap.at_seconds == 12 * H

    @pytest.mark.unit
    def test_refresh_after_toggle(self, activities, at):
        tracker = TemporalTracker(date(2025, 5, 14))
        tracker.tick(at("10:00"), activities)
        toggled = [replace(activities[0], completed=True), *activities[1:]]
        snap = tracker.refresh(toggled)
        assert snap.timing("museum").state is Lifecycle.COMPLETED

    @pytest.mark.unit
    def test_refresh_before_first_tick(self, activities):
        assert TemporalTracker().refresh(activities) is None
