"""
Scheduled jobs for reinforcement sessions.

- ``run_expiry_sweep``: finalize every overdue Pending session
  (never started -> NotHeld, started -> graded with saved answers)
- ``assign_automatic_sessions``: give every student whose grade is High in a
  difficulty an automatic session, unless one is already pending

Both are meant to be invoked periodically (``reinforce sweep`` /
``reinforce assign`` from cron). A session that cannot be expired is logged
and reported; the rest of the batch still runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy.orm import Session

from config import Settings, get_settings
from reinforce.core.clock import ensure_utc
from reinforce.core.errors import ReinforceError
from reinforce.core.grades import Grade
from reinforce.core.states import SessionState
from reinforce.db.models import ReinforcementSession
from reinforce.db.repositories import SessionRepository
from reinforce.study.exam_clock import is_overdue
from reinforce.study.session_lifecycle import SessionLifecycle


@dataclass
class SweepReport:
    """Counts of what a sweep run did."""

    examined: int = 0
    completed: int = 0
    incomplete: int = 0
    not_held: int = 0
    already_final: int = 0
    failed: list[UUID] = field(default_factory=list)

    @property
    def finalized(self) -> int:
        return self.completed + self.incomplete + self.not_held


def run_expiry_sweep(
    db_session: Session,
    now: datetime,
    settings: Settings | None = None,
    batch_size: int | None = None,
) -> SweepReport:
    """
    Expire overdue sessions.

    Args:
        db_session: Unit of work; the caller commits
        now: Sweep time
        settings: Policy override (defaults to environment settings)
        batch_size: Maximum sessions examined in this run

    Returns:
        SweepReport with per-state counts
    """
    settings = settings or get_settings()
    now = ensure_utc(now)
    lifecycle = SessionLifecycle(db_session, settings=settings)
    repo = SessionRepository(db_session)
    report = SweepReport()

    candidates = repo.expiry_candidates(
        now, batch_size or settings.sweep_batch_size, grace_seconds=settings.submit_grace_seconds
    )
    for session in candidates:
        if not is_overdue(session, now, settings.submit_grace_seconds):
            continue
        report.examined += 1
        try:
            outcome = lifecycle.expire(session.id, now)
        except ReinforceError as e:
            logger.error(f"Failed to expire session {session.id}: {e.message}")
            report.failed.append(session.id)
            continue

        if not outcome.transitioned:
            report.already_final += 1
        elif outcome.state is SessionState.COMPLETED:
            report.completed += 1
        elif outcome.state is SessionState.INCOMPLETE:
            report.incomplete += 1
        elif outcome.state is SessionState.NOT_HELD:
            report.not_held += 1

    logger.info(
        f"Expiry sweep: {report.examined} overdue, {report.completed} completed, "
        f"{report.incomplete} incomplete, {report.not_held} not held, {len(report.failed)} failed"
    )
    return report


def assign_automatic_sessions(
    db_session: Session,
    course_id: UUID,
    now: datetime,
    settings: Settings | None = None,
) -> list[ReinforcementSession]:
    """Create automatic sessions for every High grade in the course."""
    lifecycle = SessionLifecycle(db_session, settings=settings)
    created = []
    for record in lifecycle.tracker.students_at_grade(course_id, Grade.HIGH):
        session = lifecycle.create_automatic(course_id, record.student_id, record.difficulty_id, now)
        if session is not None:
            created.append(session)

    logger.info(f"Assigned {len(created)} automatic sessions in course {course_id}")
    return created
