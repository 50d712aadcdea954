"""Tests for progress calculation."""

from __future__ import annotations

import pytest

from aft_tracker.status.flows import UnresolvedStatusError
from aft_tracker.status.progress import compute_progress, percent_complete


class TestPercentComplete:
    def test_rounds_half_up(self):
        assert percent_complete(0, 8) == 13
        assert percent_complete(2, 8) == 38

    def test_rounds_down_below_half(self):
        assert percent_complete(2, 11) == 27

    def test_last_step_is_complete(self):
        assert percent_complete(10, 11) == 100

    def test_not_found_is_zero(self):
        assert percent_complete(-1, 11) == 0

    def test_empty_flow_is_zero(self):
        assert percent_complete(0, 0) == 0


class TestComputeProgress:
    def test_draft(self):
        progress = compute_progress("standard", "draft")
        assert (progress.current_step, progress.total_steps, progress.percent) == (1, 11, 9)
        assert progress.is_terminal is False

    def test_first_review(self):
        progress = compute_progress("standard", "pending_dao")
        assert progress.current_step == 3
        assert progress.percent == 27

    def test_high_to_low_counts_extra_review(self):
        progress = compute_progress("high_to_low", "approved")
        assert (progress.current_step, progress.total_steps, progress.percent) == (6, 12, 50)

    def test_completed_is_terminal_but_not_last(self):
        progress = compute_progress("standard", "completed")
        assert progress.current_step == 10
        assert progress.percent == 91
        assert progress.is_terminal is True

    def test_disposed_is_full(self):
        progress = compute_progress("standard", "disposed")
        assert progress.percent == 100
        assert progress.is_terminal is True

    def test_rejection_ends_truncated_flow(self):
        progress = compute_progress("standard", "rejected")
        assert (progress.current_step, progress.total_steps, progress.percent) == (5, 5, 100)
        assert progress.is_terminal is True

    def test_rejection_uses_deviation_source(self):
        progress = compute_progress("standard", "rejected", deviated_from="submitted")
        assert (progress.current_step, progress.total_steps) == (3, 3)

    def test_cancelled_without_history(self):
        progress = compute_progress("high_to_low", "cancelled")
        assert (progress.current_step, progress.total_steps) == (13, 13)

    def test_unknown_status_degrades_to_zero(self):
        progress = compute_progress("standard", "on_hold")
        assert progress.current_step == 0
        assert progress.total_steps == 11
        assert progress.percent == 0
        assert progress.is_terminal is False

    def test_unknown_status_strict(self):
        with pytest.raises(UnresolvedStatusError):
            compute_progress("standard", "on_hold", strict=True)

    def test_unknown_variant_uses_standard_flow(self):
        progress = compute_progress("mystery", "pending_dao")
        assert progress.total_steps == 11

    def test_to_dict(self):
        assert compute_progress("standard", "submitted").to_dict() == {
            "current_step": 2,
            "total_steps": 11,
            "percent": 18,
            "is_terminal": False,
        }
