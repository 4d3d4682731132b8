"""
Tests for line diff tracking.
"""

from param_hunter.mining.diffing import DiffTracker, count_differences, split_lines


def test_split_lines_handles_crlf():
    assert split_lines("a\r\nb\nc") == ["a", "b", "c"]


def test_count_differences_pads_shorter_side():
    assert count_differences(["a", "b"], ["a", "x", "y"]) == 2
    assert count_differences([], []) == 0


class TestDiffTracker:
    """Test noise-aware change detection."""

    def test_identical_references(self):
        tracker = DiffTracker("a\nb\nc", "a\nb\nc")

        assert tracker.initial_diff_count == 0
        assert not tracker.has_changes("a\nb\nc")
        assert tracker.has_changes("a\nX\nc")

    def test_noise_floor(self):
        """Test a timestamp line that always differs is tolerated."""
        tracker = DiffTracker("time=1\nbody", "time=2\nbody")

        assert tracker.initial_diff_count == 1
        assert not tracker.has_changes("time=3\nbody")
        assert tracker.has_changes("time=3\nother")

    def test_fewer_differences_than_floor_is_a_change(self):
        tracker = DiffTracker("time=1\nbody", "time=2\nbody")
        assert tracker.has_changes("time=1\nbody")
