"""
Consultation class models.

A consultation class is a scheduled group review over a batch of student
questions ("consultations"). Only ``base_status`` is persisted; the status
shown to readers is derived on every read from the scheduled window.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reinforce.core.states import BaseClassStatus

from .base import Base, IdMixin, TimestampMixin, enum_column


class ConsultationClass(IdMixin, TimestampMixin, Base):
    __tablename__ = "consultation_classes"

    course_id: Mapped[UUID] = mapped_column(nullable=False)
    teacher_id: Mapped[UUID | None] = mapped_column()
    name: Mapped[str] = mapped_column(Text, nullable=False)
    start_at: Mapped[datetime] = mapped_column(nullable=False)
    end_at: Mapped[datetime] = mapped_column(nullable=False)
    base_status: Mapped[BaseClassStatus] = mapped_column(
        enum_column(BaseClassStatus), nullable=False, default=BaseClassStatus.SCHEDULED
    )
    cancelled_at: Mapped[datetime | None] = mapped_column()
    outcome_reason: Mapped[str | None] = mapped_column(Text)

    review_items: Mapped[list[ClassReviewItem]] = relationship(
        back_populates="consultation_class", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_class_course_start", "course_id", "start_at"),)

    def __repr__(self) -> str:
        return f"<ConsultationClass {self.name} base={self.base_status.value}>"


class ClassReviewItem(Base):
    """A consultation scheduled for review in a class."""

    __tablename__ = "class_review_items"

    class_id: Mapped[UUID] = mapped_column(
        ForeignKey("consultation_classes.id", ondelete="CASCADE"), primary_key=True
    )
    consultation_id: Mapped[UUID] = mapped_column(primary_key=True)
    reviewed: Mapped[bool] = mapped_column(Boolean, default=False)

    consultation_class: Mapped[ConsultationClass] = relationship(back_populates="review_items")
