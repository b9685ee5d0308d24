"""
Session Assembler.

Builds the question snapshot of a reinforcement session:

1. Current grade of the student in the difficulty (must be deficient)
2. Every active system question tagged (difficulty, current grade), oldest first
3. Optional teacher-authored extras, validated and appended after the pool

The result is a list of ids. The lifecycle copies it into SessionQuestion rows,
so later edits to the catalog never reach a created session.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy.orm import Session

from config import get_settings
from reinforce.core.errors import InsufficientContentError, NoDeficiencyError, ValidationError
from reinforce.core.grades import Grade, is_deficient
from reinforce.db.repositories import QuestionRepository
from reinforce.learning.grade_tracker import DifficultyGradeTracker


@dataclass(frozen=True)
class AssembledQuiz:
    """Question snapshot for a new session."""

    grade: Grade
    question_ids: tuple[UUID, ...]  # system pool first, then extras
    extra_question_ids: tuple[UUID, ...] = ()

    @property
    def total(self) -> int:
        return len(self.question_ids)


class SessionAssembler:
    """Select the questions a session will contain."""

    def __init__(
        self,
        db_session: Session,
        tracker: DifficultyGradeTracker | None = None,
        max_extra_questions: int | None = None,
    ):
        self.questions = QuestionRepository(db_session)
        self.tracker = tracker or DifficultyGradeTracker(db_session)
        self.max_extra_questions = (
            get_settings().max_extra_questions if max_extra_questions is None else max_extra_questions
        )

    def assemble(
        self,
        course_id: UUID,
        student_id: UUID,
        difficulty_id: UUID,
        extra_question_ids: Sequence[UUID] = (),
    ) -> AssembledQuiz:
        """
        Assemble the quiz for (student, difficulty).

        Raises:
            NotFoundError: unknown difficulty
            NoDeficiencyError: current grade is None
            ValidationError: invalid extras
            InsufficientContentError: nothing to ask
        """
        self.questions.require_difficulty(difficulty_id)

        grade = self.tracker.get_current_grade(course_id, student_id, difficulty_id)
        if not is_deficient(grade):
            raise NoDeficiencyError(
                "Student has no deficiency in this difficulty",
                details={"student_id": str(student_id), "difficulty_id": str(difficulty_id)},
            )

        pool = [q.id for q in self.questions.by_tag(difficulty_id, grade)]
        extras = self._validate_extras(difficulty_id, extra_question_ids)

        question_ids = tuple(pool) + extras
        if not question_ids:
            raise InsufficientContentError(
                f"No questions available for grade {grade.value}",
                details={"difficulty_id": str(difficulty_id), "grade": grade.value},
            )

        logger.debug(
            f"Assembled {len(pool)} system + {len(extras)} extra questions "
            f"for student {student_id} at {grade.value}"
        )
        return AssembledQuiz(grade=grade, question_ids=question_ids, extra_question_ids=extras)

    def _validate_extras(self, difficulty_id: UUID, extra_question_ids: Sequence[UUID]) -> tuple[UUID, ...]:
        ids = list(extra_question_ids)
        if len(ids) > self.max_extra_questions:
            raise ValidationError(
                f"At most {self.max_extra_questions} extra questions are allowed",
                details={"extra_count": len(ids)},
            )
        if len(set(ids)) != len(ids):
            raise ValidationError("Extra questions must not repeat")

        found = {q.id: q for q in self.questions.get_many(ids)}
        for question_id in ids:
            question = found.get(question_id)
            if question is None or question.deleted_at is not None:
                raise ValidationError("Extra question not found", details={"question_id": str(question_id)})
            if question.is_system:
                raise ValidationError(
                    "Extra questions must be teacher-authored",
                    details={"question_id": str(question_id)},
                )
            if question.difficulty_id != difficulty_id:
                raise ValidationError(
                    "Extra question belongs to a different difficulty",
                    details={"question_id": str(question_id)},
                )
        return tuple(ids)
