"""
Difficulty Grade Tracker.

Holds the grade of record for every (course, student, difficulty) and the
single transition rule that moves it after a reinforcement session:

- accuracy >= PASS_THRESHOLD_PCT steps the grade DOWN (less deficient)
- accuracy <  PASS_THRESHOLD_PCT steps the grade UP (clamped at High)

The step is always applied to the grade the session was created with, so a
session never compounds with changes made while it was open.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy.orm import Session

from config import get_settings
from reinforce.core.errors import NotFoundError, ValidationError
from reinforce.core.grades import Direction, Grade, step
from reinforce.core.states import GradeChangeSource
from reinforce.db.models import DifficultyGradeChange, StudentDifficultyGrade
from reinforce.db.repositories import GradeRepository

PASS_THRESHOLD_PCT = 70.0


def next_grade(grade: Grade, accuracy_pct: float, threshold: float = PASS_THRESHOLD_PCT) -> Grade:
    """
    Pure transition rule.

    Args:
        grade: Grade the session was created with
        accuracy_pct: Session accuracy (0-100)
        threshold: Pass mark; equality counts as a pass

    Returns:
        The adjacent grade in the direction the accuracy calls for
    """
    if not 0.0 <= accuracy_pct <= 100.0:
        raise ValidationError("accuracy_pct must be between 0 and 100", {"accuracy_pct": accuracy_pct})
    direction = Direction.DOWN if accuracy_pct >= threshold else Direction.UP
    return step(grade, direction)


@dataclass
class GradeTransition:
    """Result of applying a session outcome to a grade record."""

    course_id: UUID
    student_id: UUID
    difficulty_id: UUID
    grade_before: Grade
    grade_after: Grade

    @property
    def changed(self) -> bool:
        return self.grade_before is not self.grade_after


class DifficultyGradeTracker:
    """
    Read and write StudentDifficultyGrade records.

    Apart from lazy creation in ``register_evaluation``, ``apply_outcome`` is
    the only writer. Neither method commits; the caller's unit of work does.
    """

    def __init__(self, db_session: Session, threshold: float | None = None):
        self.grades = GradeRepository(db_session)
        self.threshold = get_settings().pass_threshold_pct if threshold is None else threshold

    def get_current_grade(self, course_id: UUID, student_id: UUID, difficulty_id: UUID) -> Grade:
        record = self.grades.get(course_id, student_id, difficulty_id)
        return record.grade if record is not None else Grade.NONE

    def next_grade(self, grade: Grade, accuracy_pct: float) -> Grade:
        return next_grade(grade, accuracy_pct, self.threshold)

    def register_evaluation(
        self,
        course_id: UUID,
        student_id: UUID,
        difficulty_id: UUID,
        grade: Grade,
        now: datetime,
    ) -> StudentDifficultyGrade:
        """
        Create the grade record the first time a student is evaluated.

        An existing record is returned untouched: after creation only session
        finalization moves the grade.
        """
        record = self.grades.get(course_id, student_id, difficulty_id)
        if record is not None:
            logger.debug(
                "Grade record already exists for student {} difficulty {}; evaluation ignored",
                student_id,
                difficulty_id,
            )
            return record

        record = StudentDifficultyGrade(
            course_id=course_id,
            student_id=student_id,
            difficulty_id=difficulty_id,
            grade=grade,
        )
        self.grades.add(record)
        self.grades.add_change(
            DifficultyGradeChange(
                course_id=course_id,
                student_id=student_id,
                difficulty_id=difficulty_id,
                previous_grade=Grade.NONE,
                new_grade=grade,
                source=GradeChangeSource.EVALUATION,
                changed_at=now,
            )
        )
        logger.info(f"Registered evaluation: student {student_id} difficulty {difficulty_id} -> {grade.value}")
        return record

    def apply_outcome(
        self,
        course_id: UUID,
        student_id: UUID,
        difficulty_id: UUID,
        grade_at_session_start: Grade,
        accuracy_pct: float,
        now: datetime,
        session_id: UUID | None = None,
        lazy: bool = True,
    ) -> GradeTransition:
        """
        Step the grade of record according to a session's accuracy.

        Args:
            course_id: Course the student is enrolled in
            student_id: Student UUID
            difficulty_id: Difficulty UUID
            grade_at_session_start: Grade snapshot taken when the session was created
            accuracy_pct: Session accuracy (0-100)
            now: Transition timestamp
            session_id: Finalized session, recorded in the history row
            lazy: Create the record when missing (session finalization);
                  when False a missing record raises NotFoundError

        Returns:
            GradeTransition with the grade before and after
        """
        new_grade = self.next_grade(grade_at_session_start, accuracy_pct)

        record = self.grades.get(course_id, student_id, difficulty_id)
        if record is None:
            if not lazy:
                raise NotFoundError(
                    "No grade recorded for this student and difficulty",
                    details={"student_id": str(student_id), "difficulty_id": str(difficulty_id)},
                )
            record = StudentDifficultyGrade(
                course_id=course_id,
                student_id=student_id,
                difficulty_id=difficulty_id,
                grade=grade_at_session_start,
            )
            self.grades.add(record)

        previous = record.grade
        record.grade = new_grade

        if previous is not new_grade:
            self.grades.add_change(
                DifficultyGradeChange(
                    course_id=course_id,
                    student_id=student_id,
                    difficulty_id=difficulty_id,
                    previous_grade=previous,
                    new_grade=new_grade,
                    source=GradeChangeSource.REINFORCEMENT_SESSION,
                    session_id=session_id,
                    changed_at=now,
                )
            )

        logger.info(
            f"Grade transition for student {student_id} difficulty {difficulty_id}: "
            f"{grade_at_session_start.value} -> {new_grade.value} (accuracy {accuracy_pct:.1f}%)"
        )
        return GradeTransition(
            course_id=course_id,
            student_id=student_id,
            difficulty_id=difficulty_id,
            grade_before=grade_at_session_start,
            grade_after=new_grade,
        )

    def list_grades(self, course_id: UUID, student_id: UUID) -> list[StudentDifficultyGrade]:
        return self.grades.list_for_student(course_id, student_id)

    def students_at_grade(self, course_id: UUID, grade: Grade) -> list[StudentDifficultyGrade]:
        return self.grades.with_grade(course_id, grade)

    def history(self, course_id: UUID, student_id: UUID, difficulty_id: UUID) -> list[DifficultyGradeChange]:
        return self.grades.history(course_id, student_id, difficulty_id)
