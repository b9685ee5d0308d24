"""
Question authoring.

A question is valid when:
- it targets a ranked grade (low, medium or high)
- it has between 2 and 4 options
- exactly one option is correct
- option texts are pairwise distinct (trimmed, case-insensitive)
- the enunciation is not blank and not already used in the difficulty

System questions (no teacher) feed automatic assembly; teacher questions are
only ever attached to a session as extras.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy.orm import Session

from reinforce.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from reinforce.core.grades import Grade
from reinforce.core.principal import Principal, Role, require_staff
from reinforce.db.models import AnswerOption, Question
from reinforce.db.repositories import QuestionRepository
from reinforce.schemas import OptionIn, QuestionCreateRequest

MIN_OPTIONS = 2
MAX_OPTIONS = 4


def _normalize(text: str) -> str:
    return " ".join(text.split()).lower()


def validate_options(options: Sequence[OptionIn]) -> None:
    """Raise ValidationError unless the options satisfy the authoring rules."""
    if not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
        raise ValidationError(
            f"A question needs between {MIN_OPTIONS} and {MAX_OPTIONS} options",
            details={"option_count": len(options)},
        )

    texts = [_normalize(o.text) for o in options]
    if any(not t for t in texts):
        raise ValidationError("Option text cannot be empty")
    if len(set(texts)) != len(texts):
        raise ValidationError("Option texts must be distinct")

    correct = sum(1 for o in options if o.is_correct)
    if correct != 1:
        raise ValidationError(
            "Exactly one option must be correct",
            details={"correct_count": correct},
        )


def create_question(
    db_session: Session,
    principal: Principal,
    request: QuestionCreateRequest,
) -> Question:
    """
    Validate and persist a question.

    Questions authored by the system role have no teacher and join the
    automatic pool; everything else is recorded as teacher-authored.
    """
    require_staff(principal, "author questions")

    if request.grade is Grade.NONE:
        raise ValidationError("Questions must target low, medium or high")
    enunciation = request.enunciation.strip()
    if not enunciation:
        raise ValidationError("Enunciation cannot be empty")
    validate_options(request.options)

    repo = QuestionRepository(db_session)
    repo.require_difficulty(request.difficulty_id)
    if repo.enunciation_exists(request.difficulty_id, enunciation):
        raise ConflictError(
            "A question with this enunciation already exists for the difficulty",
            details={"difficulty_id": str(request.difficulty_id)},
        )

    question = Question(
        difficulty_id=request.difficulty_id,
        grade=request.grade,
        enunciation=enunciation,
        teacher_id=None if principal.role is Role.SYSTEM else principal.user_id,
        options=[
            AnswerOption(position=i, text=o.text.strip(), is_correct=o.is_correct)
            for i, o in enumerate(request.options)
        ],
    )
    repo.add(question)
    db_session.flush()
    logger.info(f"Created question {question.id} for difficulty {request.difficulty_id} ({request.grade.value})")
    return question


def delete_question(db_session: Session, principal: Principal, question_id: UUID, now: datetime) -> Question:
    """Soft-delete a question. Sessions already created keep their snapshot."""
    require_staff(principal, "delete questions")

    repo = QuestionRepository(db_session)
    question = repo.get_question(question_id)
    if question is None or question.deleted_at is not None:
        raise NotFoundError("Question not found", details={"question_id": str(question_id)})
    if principal.role is Role.TEACHER and question.teacher_id != principal.user_id:
        raise PermissionDeniedError("Teachers may only delete their own questions")

    question.deleted_at = now
    db_session.flush()
    logger.info(f"Deleted question {question_id}")
    return question
