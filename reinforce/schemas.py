"""
Request models accepted by the engine.

These are the wire shapes an outer HTTP layer deserializes into. They check
types only; business rules (deadline window, extra-question limit, option
rules) are enforced by the services so that they raise the engine's own
error taxonomy.
"""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from reinforce.core.grades import Grade


# ========================================
# Reinforcement Sessions
# ========================================


class CreateSessionRequest(BaseModel):
    """Request model for a teacher-created reinforcement session."""

    model_config = ConfigDict(frozen=True)

    student_id: UUID = Field(..., description="Student the session is assigned to")
    difficulty_id: UUID = Field(..., description="Difficulty being reinforced")
    deadline_at: datetime = Field(..., description="Last moment the session may be started")
    time_limit_minutes: int = Field(..., description="Exam duration once started")
    extra_question_ids: list[UUID] = Field(
        default_factory=list,
        description="Teacher-authored questions appended to the system pool",
    )


class AnswerIn(BaseModel):
    """One chosen option."""

    model_config = ConfigDict(frozen=True)

    question_id: UUID
    chosen_option_id: UUID


class SubmitAnswersRequest(BaseModel):
    """Request model for saving or submitting answers."""

    answers: list[AnswerIn] = Field(default_factory=list, description="Chosen option per question")

    @classmethod
    def from_pairs(cls, pairs: list[tuple[UUID, UUID]]) -> SubmitAnswersRequest:
        return cls(answers=[AnswerIn(question_id=q, chosen_option_id=o) for q, o in pairs])


# ========================================
# Question Catalog
# ========================================


class OptionIn(BaseModel):
    text: str = Field(..., description="Option text shown to the student")
    is_correct: bool = Field(False, description="Exactly one option per question is correct")


class QuestionCreateRequest(BaseModel):
    """Request model for authoring a question."""

    difficulty_id: UUID = Field(..., description="Difficulty the question targets")
    grade: Grade = Field(..., description="Grade the question targets (low, medium, high)")
    enunciation: str = Field(..., description="Question text")
    options: list[OptionIn] = Field(..., description="Two to four answer options")
