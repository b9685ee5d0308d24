"""
Repository pattern for database operations.

Provides:
- QuestionRepository: difficulties and questions
- GradeRepository: StudentDifficultyGrade records and their history
- SessionRepository: reinforcement sessions, including the compare-and-swap
  on ``state`` that guarantees at-most-once finalization
- ClassRepository: consultation classes

Repositories never commit. The caller owns the unit of work (see
``reinforce.db.database.session_scope``), so a state flip, the grade write and
the result rows become visible together.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from reinforce.core.errors import NotFoundError
from reinforce.core.grades import Grade
from reinforce.core.states import SessionState

from .models import (
    ConsultationClass,
    Difficulty,
    DifficultyGradeChange,
    Question,
    ReinforcementSession,
    StudentDifficultyGrade,
)


class QuestionRepository:
    """Repository for difficulties and questions."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_difficulty(self, difficulty_id: UUID) -> Difficulty | None:
        return self.db.get(Difficulty, difficulty_id)

    def require_difficulty(self, difficulty_id: UUID) -> Difficulty:
        difficulty = self.get_difficulty(difficulty_id)
        if difficulty is None:
            raise NotFoundError("Difficulty not found", details={"difficulty_id": str(difficulty_id)})
        return difficulty

    def get_question(self, question_id: UUID) -> Question | None:
        return self.db.get(Question, question_id)

    def get_many(self, question_ids: Iterable[UUID]) -> list[Question]:
        ids = list(question_ids)
        if not ids:
            return []
        stmt = (
            select(Question)
            .where(Question.id.in_(ids))
            .options(selectinload(Question.options))
        )
        return list(self.db.scalars(stmt))

    def by_tag(self, difficulty_id: UUID, grade: Grade) -> list[Question]:
        """Active system-authored questions for (difficulty, grade), oldest first."""
        stmt = (
            select(Question)
            .where(
                Question.difficulty_id == difficulty_id,
                Question.grade == grade,
                Question.teacher_id.is_(None),
                Question.deleted_at.is_(None),
            )
            .order_by(Question.created_at, Question.id)
        )
        return list(self.db.scalars(stmt))

    def enunciation_exists(self, difficulty_id: UUID, enunciation: str) -> bool:
        stmt = select(func.count(Question.id)).where(
            Question.difficulty_id == difficulty_id,
            func.lower(Question.enunciation) == enunciation.strip().lower(),
            Question.deleted_at.is_(None),
        )
        return bool(self.db.scalar(stmt))

    def add(self, entity: Difficulty | Question) -> None:
        self.db.add(entity)


class GradeRepository:
    """Repository for StudentDifficultyGrade records."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, course_id: UUID, student_id: UUID, difficulty_id: UUID) -> StudentDifficultyGrade | None:
        stmt = select(StudentDifficultyGrade).where(
            StudentDifficultyGrade.course_id == course_id,
            StudentDifficultyGrade.student_id == student_id,
            StudentDifficultyGrade.difficulty_id == difficulty_id,
        )
        return self.db.scalars(stmt).first()

    def add(self, record: StudentDifficultyGrade) -> None:
        self.db.add(record)
        self.db.flush()

    def add_change(self, change: DifficultyGradeChange) -> None:
        self.db.add(change)
        self.db.flush()

    def list_for_student(self, course_id: UUID, student_id: UUID) -> list[StudentDifficultyGrade]:
        stmt = (
            select(StudentDifficultyGrade)
            .where(
                StudentDifficultyGrade.course_id == course_id,
                StudentDifficultyGrade.student_id == student_id,
            )
            .order_by(StudentDifficultyGrade.created_at)
        )
        return list(self.db.scalars(stmt))

    def with_grade(self, course_id: UUID, grade: Grade) -> list[StudentDifficultyGrade]:
        stmt = (
            select(StudentDifficultyGrade)
            .where(
                StudentDifficultyGrade.course_id == course_id,
                StudentDifficultyGrade.grade == grade,
            )
            .order_by(StudentDifficultyGrade.student_id, StudentDifficultyGrade.difficulty_id)
        )
        return list(self.db.scalars(stmt))

    def history(self, course_id: UUID, student_id: UUID, difficulty_id: UUID) -> list[DifficultyGradeChange]:
        stmt = (
            select(DifficultyGradeChange)
            .where(
                DifficultyGradeChange.course_id == course_id,
                DifficultyGradeChange.student_id == student_id,
                DifficultyGradeChange.difficulty_id == difficulty_id,
            )
            .order_by(DifficultyGradeChange.changed_at)
        )
        return list(self.db.scalars(stmt))


class SessionRepository:
    """Repository for reinforcement session operations."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, session_id: UUID) -> ReinforcementSession | None:
        return self.db.get(ReinforcementSession, session_id)

    def require(self, session_id: UUID) -> ReinforcementSession:
        session = self.get(session_id)
        if session is None:
            raise NotFoundError("Reinforcement session not found", details={"session_id": str(session_id)})
        return session

    def add(self, session: ReinforcementSession) -> None:
        self.db.add(session)
        self.db.flush()

    def next_session_number(self, course_id: UUID, student_id: UUID) -> int:
        stmt = select(func.max(ReinforcementSession.session_number)).where(
            ReinforcementSession.course_id == course_id,
            ReinforcementSession.student_id == student_id,
        )
        last = self.db.scalar(stmt)
        return (last or 0) + 1

    def find_pending(
        self,
        course_id: UUID,
        student_id: UUID,
        difficulty_id: UUID | None = None,
        teacher_assigned_only: bool = False,
    ) -> list[ReinforcementSession]:
        stmt = select(ReinforcementSession).where(
            ReinforcementSession.course_id == course_id,
            ReinforcementSession.student_id == student_id,
            ReinforcementSession.state == SessionState.PENDING,
        )
        if difficulty_id is not None:
            stmt = stmt.where(ReinforcementSession.difficulty_id == difficulty_id)
        if teacher_assigned_only:
            stmt = stmt.where(ReinforcementSession.teacher_id.is_not(None))
        return list(self.db.scalars(stmt))

    def list_for_student(self, course_id: UUID, student_id: UUID) -> list[ReinforcementSession]:
        stmt = (
            select(ReinforcementSession)
            .where(
                ReinforcementSession.course_id == course_id,
                ReinforcementSession.student_id == student_id,
            )
            .order_by(ReinforcementSession.session_number.desc())
        )
        return list(self.db.scalars(stmt))

    def expiry_candidates(self, now: datetime, limit: int, grace_seconds: int = 0) -> Sequence[ReinforcementSession]:
        """
        Overdue Pending sessions, oldest overdue first.

        Never started: past ``deadline_at``. Started: past ``exam_ends_at``
        plus the submit grace. Sessions still inside their window are never
        returned, so they cannot crowd overdue ones out of the batch.
        """
        stmt = (
            select(ReinforcementSession)
            .where(
                ReinforcementSession.state == SessionState.PENDING,
                or_(
                    and_(
                        ReinforcementSession.started_at.is_(None),
                        ReinforcementSession.deadline_at < now,
                    ),
                    ReinforcementSession.exam_ends_at < now - timedelta(seconds=grace_seconds),
                ),
            )
            .order_by(func.coalesce(ReinforcementSession.exam_ends_at, ReinforcementSession.deadline_at))
            .limit(limit)
        )
        return list(self.db.scalars(stmt))

    def mark_started(self, session_id: UUID, now: datetime, ends_at: datetime) -> bool:
        """Set ``started_at`` and ``exam_ends_at`` once. Returns False if another caller got there first."""
        self.db.flush()
        stmt = (
            update(ReinforcementSession)
            .where(
                ReinforcementSession.id == session_id,
                ReinforcementSession.state == SessionState.PENDING,
                ReinforcementSession.started_at.is_(None),
            )
            .values(started_at=now, exam_ends_at=ends_at)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def flip_state(self, session_id: UUID, to_state: SessionState, now: datetime, **values) -> bool:
        """
        Compare-and-swap Pending -> ``to_state``.

        Returns True for the single caller that observed Pending; every other
        caller gets False and must treat the session as already finalized.
        """
        self.db.flush()
        stmt = (
            update(ReinforcementSession)
            .where(
                ReinforcementSession.id == session_id,
                ReinforcementSession.state == SessionState.PENDING,
            )
            .values(state=to_state, finalized_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def reload(self, session: ReinforcementSession) -> ReinforcementSession:
        self.db.refresh(session)
        return session


class ClassRepository:
    """Repository for consultation classes."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, class_id: UUID) -> ConsultationClass | None:
        return self.db.get(ConsultationClass, class_id)

    def require(self, class_id: UUID) -> ConsultationClass:
        consultation_class = self.get(class_id)
        if consultation_class is None:
            raise NotFoundError("Consultation class not found", details={"class_id": str(class_id)})
        return consultation_class

    def add(self, consultation_class: ConsultationClass) -> None:
        self.db.add(consultation_class)
        self.db.flush()
