"""
Unit tests for the consultation class status resolver.

Precedence: cancelled, then not held, then pending assignment, then the
scheduled window.
"""

from datetime import datetime, timedelta, timezone

import pytest

from reinforce.consultation.status_resolver import resolve_class_status
from reinforce.core.states import BaseClassStatus, ClassStatus

START = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)
END = START + timedelta(hours=1)
BEFORE = START - timedelta(minutes=5)
DURING = START + timedelta(minutes=30)
AFTER = END + timedelta(minutes=5)


class TestPrecedence:
    """Markers that override the time window."""

    def test_cancelled_wins_over_held(self):
        status = resolve_class_status(AFTER, START, END, BaseClassStatus.HELD, cancelled_at=BEFORE)
        assert status is ClassStatus.CANCELLED

    @pytest.mark.parametrize("now", [BEFORE, DURING, AFTER])
    def test_cancelled_at_any_time(self, now):
        status = resolve_class_status(now, START, END, BaseClassStatus.SCHEDULED, cancelled_at=BEFORE)
        assert status is ClassStatus.CANCELLED

    @pytest.mark.parametrize("now", [BEFORE, DURING, AFTER])
    def test_not_held_ignores_window(self, now):
        assert resolve_class_status(now, START, END, BaseClassStatus.NOT_HELD) is ClassStatus.NOT_HELD

    @pytest.mark.parametrize("now", [BEFORE, DURING, AFTER, END + timedelta(days=30)])
    def test_pending_assignment_never_expires(self, now):
        status = resolve_class_status(now, START, END, BaseClassStatus.PENDING_ASSIGNMENT)
        assert status is ClassStatus.PENDING_ASSIGNMENT


class TestWindow:
    """Scheduled classes move through the window."""

    def test_before_start_is_scheduled(self):
        assert resolve_class_status(BEFORE, START, END, BaseClassStatus.SCHEDULED) is ClassStatus.SCHEDULED

    def test_within_window_is_in_progress(self):
        assert resolve_class_status(DURING, START, END, BaseClassStatus.SCHEDULED) is ClassStatus.IN_PROGRESS

    def test_start_boundary_is_in_progress(self):
        assert resolve_class_status(START, START, END, BaseClassStatus.SCHEDULED) is ClassStatus.IN_PROGRESS

    def test_end_boundary_without_outcome_is_closing_soon(self):
        assert resolve_class_status(END, START, END, BaseClassStatus.SCHEDULED) is ClassStatus.CLOSING_SOON

    def test_after_end_with_held_outcome(self):
        assert resolve_class_status(AFTER, START, END, BaseClassStatus.HELD) is ClassStatus.HELD

    def test_held_outcome_during_window_still_in_progress(self):
        assert resolve_class_status(DURING, START, END, BaseClassStatus.HELD) is ClassStatus.IN_PROGRESS

    def test_naive_datetimes_are_treated_as_utc(self):
        naive_start = START.replace(tzinfo=None)
        naive_end = END.replace(tzinfo=None)
        status = resolve_class_status(DURING, naive_start, naive_end, BaseClassStatus.SCHEDULED)
        assert status is ClassStatus.IN_PROGRESS
