"""
Exam Clock.

Server side, ``ExamWindow`` derives the exam window from the persisted
``started_at``; nothing else extends it and there is no pause. The session
``deadline_at`` only gates whether the exam may be started.

Client side, ``ExamCountdown`` recomputes the remaining time from the fetched
``started_at`` on every tick, so a reload resumes at the right value. When the
countdown reaches zero it calls the submit callback once. That call is best
effort: the server sweep finalizes the session anyway.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from reinforce.core.clock import ensure_utc
from reinforce.core.states import SessionState
from reinforce.db.models import ReinforcementSession

ZERO = timedelta(0)


@dataclass(frozen=True)
class ExamWindow:
    """Wall-clock window of a started exam."""

    started_at: datetime
    time_limit_minutes: int
    deadline_at: datetime | None = None

    @classmethod
    def from_session(cls, session: ReinforcementSession) -> ExamWindow | None:
        if session.started_at is None:
            return None
        return cls(
            started_at=ensure_utc(session.started_at),
            time_limit_minutes=session.time_limit_minutes,
            deadline_at=session.deadline,
        )

    @property
    def ends_at(self) -> datetime:
        return ensure_utc(self.started_at) + timedelta(minutes=self.time_limit_minutes)

    def remaining(self, now: datetime) -> timedelta:
        return max(ZERO, self.ends_at - ensure_utc(now))

    def is_over(self, now: datetime) -> bool:
        return ensure_utc(now) >= self.ends_at

    def is_overdue(self, now: datetime, grace_seconds: int = 0) -> bool:
        """True once the window closed and the submit grace has passed."""
        return ensure_utc(now) > self.ends_at + timedelta(seconds=grace_seconds)


def is_overdue(session: ReinforcementSession, now: datetime, grace_seconds: int = 0) -> bool:
    """
    Whether a Pending session must be expired.

    Never started: past ``deadline_at``.
    Started: past the end of the exam window plus ``grace_seconds``.
    """
    if session.state.is_terminal:
        return False
    window = ExamWindow.from_session(session)
    if window is None:
        return ensure_utc(now) > session.deadline
    return window.is_overdue(now, grace_seconds)


class ExamCountdown:
    """
    Cooperative countdown for an exam being taken.

    Driven by ``tick(now)`` from whatever loop renders the exam; it owns no
    thread or timer of its own.
    """

    def __init__(
        self,
        started_at: datetime,
        time_limit_minutes: int,
        on_zero: Callable[[], Any],
    ):
        self.window = ExamWindow(started_at=ensure_utc(started_at), time_limit_minutes=time_limit_minutes)
        self._on_zero = on_zero
        self._fired = False
        self._stopped = False

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any], on_zero: Callable[[], Any]) -> ExamCountdown:
        """
        Build from a fetched session payload.

        Args:
            snapshot: Mapping with ``started_at`` and ``time_limit_minutes``
                (``started_at`` may be an ISO-8601 string)
            on_zero: Submit callback

        Raises:
            ValueError: the session has not been started
        """
        started_at = snapshot.get("started_at")
        if started_at is None:
            raise ValueError("Session has not been started")
        if isinstance(started_at, str):
            started_at = datetime.fromisoformat(started_at)
        countdown = cls(started_at, int(snapshot["time_limit_minutes"]), on_zero)
        state = snapshot.get("state")
        if state is not None:
            countdown.observe_state(SessionState(state))
        return countdown

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def active(self) -> bool:
        return not (self._stopped or self._fired)

    def remaining(self, now: datetime) -> timedelta:
        return self.window.remaining(now)

    def tick(self, now: datetime) -> timedelta:
        """Recompute the remaining time; fire the submit callback once at zero."""
        remaining = self.window.remaining(now)
        if remaining == ZERO and self.active:
            self._fired = True
            try:
                self._on_zero()
            except Exception as e:  # server sweep is the backstop
                logger.warning(f"Auto-submit at zero failed: {e}")
        return remaining

    def observe_state(self, state: SessionState) -> None:
        """Stop counting once the server reports a terminal state."""
        if state.is_terminal and not self._stopped:
            self._stopped = True
            logger.debug(f"Countdown stopped: session is {state.value}")
