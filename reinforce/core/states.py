"""Lifecycle and status enumerations persisted by the ORM models."""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """Reinforcement session lifecycle state. Everything but PENDING is terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    NOT_HELD = "not_held"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionState.PENDING


class ResultTrigger(str, Enum):
    """What finalized a completed session."""

    SUBMIT = "submit"
    EXPIRY = "expiry"


class GradeChangeSource(str, Enum):
    """Origin of a StudentDifficultyGrade write."""

    EVALUATION = "evaluation"
    REINFORCEMENT_SESSION = "reinforcement_session"


class BaseClassStatus(str, Enum):
    """Consultation class status recorded by business actions."""

    SCHEDULED = "scheduled"
    HELD = "held"
    NOT_HELD = "not_held"
    PENDING_ASSIGNMENT = "pending_assignment"


class ClassStatus(str, Enum):
    """Consultation class status shown to readers, derived on every read."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    CLOSING_SOON = "closing_soon"
    HELD = "held"
    NOT_HELD = "not_held"
    CANCELLED = "cancelled"
    PENDING_ASSIGNMENT = "pending_assignment"
