# SQLAlchemy models
from .base import Base
from .catalog import (
    AnswerOption,
    Difficulty,
    Question,
    Topic,
)
from .consultation import (
    ClassReviewItem,
    ConsultationClass,
)
from .reinforcement import (
    DifficultyGradeChange,
    ReinforcementSession,
    SessionAnswerDraft,
    SessionQuestion,
    SessionResult,
    SessionResultAnswer,
    StudentDifficultyGrade,
)

__all__ = [
    # Base
    "Base",
    # Catalog
    "Topic",
    "Difficulty",
    "Question",
    "AnswerOption",
    # Reinforcement
    "StudentDifficultyGrade",
    "DifficultyGradeChange",
    "ReinforcementSession",
    "SessionQuestion",
    "SessionAnswerDraft",
    "SessionResult",
    "SessionResultAnswer",
    # Consultation
    "ConsultationClass",
    "ClassReviewItem",
]
