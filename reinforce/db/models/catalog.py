"""
Question catalog models.

- Topic: group of difficulties
- Difficulty: tracked skill a student may be deficient in (immutable once created)
- Question: enunciation tagged with the difficulty and grade it targets.
  ``teacher_id`` is None for system-authored questions.
- AnswerOption: 2-4 per question, exactly one correct
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reinforce.core.grades import Grade

from .base import Base, IdMixin, TimestampMixin, enum_column


class Topic(IdMixin, TimestampMixin, Base):
    __tablename__ = "topics"

    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    difficulties: Mapped[list[Difficulty]] = relationship(back_populates="topic")

    def __repr__(self) -> str:
        return f"<Topic {self.name}>"


class Difficulty(IdMixin, TimestampMixin, Base):
    __tablename__ = "difficulties"

    topic_id: Mapped[UUID] = mapped_column(ForeignKey("topics.id"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    topic: Mapped[Topic] = relationship(back_populates="difficulties")

    __table_args__ = (UniqueConstraint("topic_id", "name", name="uq_difficulty_topic_name"),)

    def __repr__(self) -> str:
        return f"<Difficulty {self.name}>"


class Question(IdMixin, TimestampMixin, Base):
    """Multiple choice question. Soft-deleted via ``deleted_at``."""

    __tablename__ = "questions"

    difficulty_id: Mapped[UUID] = mapped_column(ForeignKey("difficulties.id"), nullable=False)
    grade: Mapped[Grade] = mapped_column(enum_column(Grade), nullable=False)
    enunciation: Mapped[str] = mapped_column(Text, nullable=False)
    teacher_id: Mapped[UUID | None] = mapped_column()
    deleted_at: Mapped[datetime | None] = mapped_column()

    options: Mapped[list[AnswerOption]] = relationship(
        back_populates="question",
        order_by="AnswerOption.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_question_tag", "difficulty_id", "grade"),
    )

    @property
    def is_system(self) -> bool:
        return self.teacher_id is None

    @property
    def correct_option(self) -> AnswerOption | None:
        return next((o for o in self.options if o.is_correct), None)

    def __repr__(self) -> str:
        author = "system" if self.is_system else f"teacher={self.teacher_id}"
        return f"<Question {self.id} grade={self.grade.value} {author}>"


class AnswerOption(IdMixin, Base):
    __tablename__ = "answer_options"

    question_id: Mapped[UUID] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)

    question: Mapped[Question] = relationship(back_populates="options")

    def __repr__(self) -> str:
        return f"<AnswerOption {self.position} correct={self.is_correct}>"