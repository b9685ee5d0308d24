"""
Reinforcement session models.

- StudentDifficultyGrade: current grade per student-in-course per difficulty
- DifficultyGradeChange: append-only history of grade writes
- ReinforcementSession: one timed quiz attempt
- SessionQuestion: question snapshot taken at creation (never re-queried)
- SessionAnswerDraft: answers saved while the exam is open
- SessionResult / SessionResultAnswer: graded outcome, present iff Completed
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reinforce.core.clock import ensure_utc
from reinforce.core.grades import Grade
from reinforce.core.states import GradeChangeSource, ResultTrigger, SessionState

from .base import Base, IdMixin, TimestampMixin, enum_column


class StudentDifficultyGrade(IdMixin, TimestampMixin, Base):
    """
    Grade of record for (course, student, difficulty).

    Created lazily on first evaluation, then mutated only by session
    finalization. Never hard-deleted.
    """

    __tablename__ = "student_difficulty_grades"

    course_id: Mapped[UUID] = mapped_column(nullable=False)
    student_id: Mapped[UUID] = mapped_column(nullable=False)
    difficulty_id: Mapped[UUID] = mapped_column(ForeignKey("difficulties.id"), nullable=False)
    grade: Mapped[Grade] = mapped_column(enum_column(Grade), nullable=False, default=Grade.NONE)

    __table_args__ = (
        UniqueConstraint("course_id", "student_id", "difficulty_id", name="uq_student_difficulty"),
        Index("idx_grade_course_grade", "course_id", "grade"),
    )

    def __repr__(self) -> str:
        return f"<StudentDifficultyGrade student={self.student_id} difficulty={self.difficulty_id} grade={self.grade.value}>"


class DifficultyGradeChange(IdMixin, Base):
    __tablename__ = "difficulty_grade_changes"

    course_id: Mapped[UUID] = mapped_column(nullable=False)
    student_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    difficulty_id: Mapped[UUID] = mapped_column(ForeignKey("difficulties.id"), nullable=False)
    previous_grade: Mapped[Grade] = mapped_column(enum_column(Grade), nullable=False)
    new_grade: Mapped[Grade] = mapped_column(enum_column(Grade), nullable=False)
    source: Mapped[GradeChangeSource] = mapped_column(enum_column(GradeChangeSource), nullable=False)
    session_id: Mapped[UUID | None] = mapped_column(ForeignKey("reinforcement_sessions.id"))
    changed_at: Mapped[datetime] = mapped_column(nullable=False)


class ReinforcementSession(IdMixin, TimestampMixin, Base):
    __tablename__ = "reinforcement_sessions"

    course_id: Mapped[UUID] = mapped_column(nullable=False)
    student_id: Mapped[UUID] = mapped_column(nullable=False)
    difficulty_id: Mapped[UUID] = mapped_column(ForeignKey("difficulties.id"), nullable=False)
    session_number: Mapped[int] = mapped_column(Integer, nullable=False)
    session_grade: Mapped[Grade] = mapped_column(enum_column(Grade), nullable=False)
    teacher_id: Mapped[UUID | None] = mapped_column()  # None = automatic

    # Schedule
    deadline_at: Mapped[datetime] = mapped_column(nullable=False)
    time_limit_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    # Lifecycle
    state: Mapped[SessionState] = mapped_column(
        enum_column(SessionState), nullable=False, default=SessionState.PENDING
    )
    started_at: Mapped[datetime | None] = mapped_column()
    exam_ends_at: Mapped[datetime | None] = mapped_column()  # started_at + time limit, set on start
    finalized_at: Mapped[datetime | None] = mapped_column()
    cancelled_at: Mapped[datetime | None] = mapped_column()
    cancel_reason: Mapped[str | None] = mapped_column(Text)

    questions: Mapped[list[SessionQuestion]] = relationship(
        back_populates="session",
        order_by="SessionQuestion.position",
        cascade="all, delete-orphan",
    )
    drafts: Mapped[list[SessionAnswerDraft]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )
    result: Mapped[SessionResult | None] = relationship(
        back_populates="session", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("course_id", "student_id", "session_number", name="uq_session_number"),
        Index("idx_session_overdue", "state", "deadline_at"),
        Index("idx_session_window", "state", "exam_ends_at"),
        Index("idx_session_student", "course_id", "student_id", "state"),
    )

    @property
    def is_automatic(self) -> bool:
        return self.teacher_id is None

    @property
    def is_started(self) -> bool:
        return self.started_at is not None

    @property
    def deadline(self) -> datetime:
        return ensure_utc(self.deadline_at)

    def __repr__(self) -> str:
        return f"<ReinforcementSession #{self.session_number} student={self.student_id} state={self.state.value}>"


class SessionQuestion(Base):
    __tablename__ = "session_questions"

    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("reinforcement_sessions.id", ondelete="CASCADE"), primary_key=True
    )
    question_id: Mapped[UUID] = mapped_column(ForeignKey("questions.id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_extra: Mapped[bool] = mapped_column(Boolean, default=False)

    session: Mapped[ReinforcementSession] = relationship(back_populates="questions")


class SessionAnswerDraft(Base):
    __tablename__ = "session_answer_drafts"

    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("reinforcement_sessions.id", ondelete="CASCADE"), primary_key=True
    )
    question_id: Mapped[UUID] = mapped_column(ForeignKey("questions.id"), primary_key=True)
    chosen_option_id: Mapped[UUID] = mapped_column(nullable=False)
    saved_at: Mapped[datetime] = mapped_column(nullable=False)

    session: Mapped[ReinforcementSession] = relationship(back_populates="drafts")


class SessionResult(IdMixin, Base):
    __tablename__ = "session_results"

    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("reinforcement_sessions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    correct_count: Mapped[int] = mapped_column(Integer, nullable=False)
    incorrect_count: Mapped[int] = mapped_column(Integer, nullable=False)
    accuracy_pct: Mapped[float] = mapped_column(Float, nullable=False)
    grade_before: Mapped[Grade] = mapped_column(enum_column(Grade), nullable=False)
    grade_after: Mapped[Grade] = mapped_column(enum_column(Grade), nullable=False)
    trigger: Mapped[ResultTrigger] = mapped_column(enum_column(ResultTrigger), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(nullable=False)

    session: Mapped[ReinforcementSession] = relationship(back_populates="result")
    answers: Mapped[list[SessionResultAnswer]] = relationship(
        back_populates="result", cascade="all, delete-orphan"
    )

    def chosen_options(self) -> dict[UUID, UUID | None]:
        return {a.question_id: a.chosen_option_id for a in self.answers}


class SessionResultAnswer(Base):
    __tablename__ = "session_result_answers"

    result_id: Mapped[UUID] = mapped_column(
        ForeignKey("session_results.id", ondelete="CASCADE"), primary_key=True
    )
    question_id: Mapped[UUID] = mapped_column(ForeignKey("questions.id"), primary_key=True)
    chosen_option_id: Mapped[UUID | None] = mapped_column()
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)

    result: Mapped[SessionResult] = relationship(back_populates="answers")
