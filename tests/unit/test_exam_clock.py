"""
Unit tests for the exam clock.

Tests:
- ExamWindow arithmetic (end, remaining, overdue with grace)
- overdue detection for started and never-started sessions
- ExamCountdown: reload-safe remaining time, single auto-submit, stop on terminal state
"""

from datetime import datetime, timedelta, timezone

import pytest

from reinforce.core.states import SessionState
from reinforce.db.models import ReinforcementSession
from reinforce.study.exam_clock import ExamCountdown, ExamWindow, is_overdue

STARTED = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)


def make_session(started_at=None, state=SessionState.PENDING, deadline=STARTED + timedelta(hours=1)):
    return ReinforcementSession(
        state=state,
        started_at=started_at,
        deadline_at=deadline,
        time_limit_minutes=30,
    )


class TestExamWindow:
    """Server-side window derived from started_at."""

    def test_ends_at(self):
        window = ExamWindow(STARTED, 30)
        assert window.ends_at == STARTED + timedelta(minutes=30)

    def test_remaining_clamped_at_zero(self):
        window = ExamWindow(STARTED, 30)
        assert window.remaining(STARTED + timedelta(minutes=10)) == timedelta(minutes=20)
        assert window.remaining(STARTED + timedelta(hours=2)) == timedelta(0)

    def test_is_over_at_the_limit(self):
        window = ExamWindow(STARTED, 30)
        assert not window.is_over(STARTED + timedelta(minutes=29, seconds=59))
        assert window.is_over(STARTED + timedelta(minutes=30))

    def test_overdue_honours_grace(self):
        window = ExamWindow(STARTED, 30)
        end = window.ends_at
        assert not window.is_overdue(end + timedelta(seconds=30), grace_seconds=30)
        assert window.is_overdue(end + timedelta(seconds=31), grace_seconds=30)

    def test_window_is_not_clamped_by_deadline(self):
        """Starting near the deadline still grants the full time limit."""
        session = make_session(started_at=STARTED, deadline=STARTED + timedelta(minutes=5))
        window = ExamWindow.from_session(session)
        assert window.ends_at == STARTED + timedelta(minutes=30)

    def test_naive_started_at_is_utc(self):
        window = ExamWindow(STARTED.replace(tzinfo=None), 30)
        assert window.ends_at == STARTED + timedelta(minutes=30)

    def test_from_unstarted_session_is_none(self):
        assert ExamWindow.from_session(make_session()) is None


class TestIsOverdue:
    """When a Pending session must be expired."""

    def test_never_started_after_deadline(self):
        session = make_session()
        assert not is_overdue(session, session.deadline_at)
        assert is_overdue(session, session.deadline_at + timedelta(seconds=1))

    def test_started_uses_exam_window_not_deadline(self):
        session = make_session(started_at=STARTED, deadline=STARTED + timedelta(minutes=5))
        assert not is_overdue(session, STARTED + timedelta(minutes=20), grace_seconds=30)
        assert is_overdue(session, STARTED + timedelta(minutes=31), grace_seconds=30)

    @pytest.mark.parametrize(
        "state",
        [SessionState.COMPLETED, SessionState.INCOMPLETE, SessionState.NOT_HELD, SessionState.CANCELLED],
    )
    def test_terminal_sessions_are_never_overdue(self, state):
        session = make_session(state=state)
        assert not is_overdue(session, STARTED + timedelta(days=30))


class TestExamCountdown:
    """Cooperative client countdown."""

    def test_reload_recomputes_from_started_at(self):
        snapshot = {"started_at": STARTED.isoformat(), "time_limit_minutes": 30, "state": "pending"}
        first = ExamCountdown.from_snapshot(snapshot, on_zero=lambda: None)
        first.tick(STARTED + timedelta(minutes=5))

        reloaded = ExamCountdown.from_snapshot(snapshot, on_zero=lambda: None)
        now = STARTED + timedelta(minutes=12)
        assert reloaded.tick(now) == first.tick(now) == timedelta(minutes=18)

    def test_fires_exactly_once_at_zero(self):
        calls = []
        countdown = ExamCountdown(STARTED, 30, on_zero=lambda: calls.append(1))

        countdown.tick(STARTED + timedelta(minutes=29))
        assert calls == []
        countdown.tick(STARTED + timedelta(minutes=30))
        countdown.tick(STARTED + timedelta(minutes=31))
        assert calls == [1]
        assert countdown.fired
        assert not countdown.active

    def test_callback_failure_is_swallowed(self):
        def boom():
            raise RuntimeError("network down")

        countdown = ExamCountdown(STARTED, 30, on_zero=boom)
        assert countdown.tick(STARTED + timedelta(hours=1)) == timedelta(0)
        assert countdown.fired

    def test_terminal_state_stops_countdown(self):
        calls = []
        countdown = ExamCountdown(STARTED, 30, on_zero=lambda: calls.append(1))
        countdown.observe_state(SessionState.COMPLETED)

        countdown.tick(STARTED + timedelta(hours=1))
        assert calls == []
        assert not countdown.active

    def test_pending_state_keeps_counting(self):
        countdown = ExamCountdown(STARTED, 30, on_zero=lambda: None)
        countdown.observe_state(SessionState.PENDING)
        assert countdown.active

    def test_snapshot_of_finished_session_never_fires(self):
        calls = []
        snapshot = {"started_at": STARTED, "time_limit_minutes": 30, "state": "completed"}
        countdown = ExamCountdown.from_snapshot(snapshot, on_zero=lambda: calls.append(1))
        countdown.tick(STARTED + timedelta(hours=1))
        assert calls == []

    def test_unstarted_snapshot_is_rejected(self):
        with pytest.raises(ValueError):
            ExamCountdown.from_snapshot({"started_at": None, "time_limit_minutes": 30}, on_zero=lambda: None)
