"""
Consultation class actions.

Business actions only ever write ``base_status``, ``cancelled_at``,
``outcome_reason`` and the review flags; the status readers see is resolved
from those on every read (see ``status_resolver``).
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy.orm import Session

from reinforce.core.clock import ensure_utc
from reinforce.core.errors import InvalidStateTransitionError, PermissionDeniedError, ValidationError
from reinforce.core.principal import Principal, Role, require_staff
from reinforce.core.states import BaseClassStatus, ClassStatus
from reinforce.db.models import ClassReviewItem, ConsultationClass
from reinforce.db.repositories import ClassRepository
from reinforce.consultation.status_resolver import resolve_for


class ConsultationClassService:
    """Schedule, cancel and close consultation classes."""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.classes = ClassRepository(db_session)

    def schedule(
        self,
        principal: Principal,
        course_id: UUID,
        name: str,
        start_at: datetime,
        end_at: datetime,
        consultation_ids: Iterable[UUID] = (),
        teacher_id: UUID | None = None,
    ) -> ConsultationClass:
        """
        Create a class. Without a teacher it waits in PendingAssignment.
        """
        require_staff(principal, "schedule consultation classes")
        start_at, end_at = ensure_utc(start_at), ensure_utc(end_at)
        if not name.strip():
            raise ValidationError("Class name cannot be empty")
        if end_at <= start_at:
            raise ValidationError("Class must end after it starts")

        consultation_class = ConsultationClass(
            course_id=course_id,
            teacher_id=teacher_id,
            name=name.strip(),
            start_at=start_at,
            end_at=end_at,
            base_status=BaseClassStatus.SCHEDULED if teacher_id else BaseClassStatus.PENDING_ASSIGNMENT,
            review_items=[ClassReviewItem(consultation_id=c) for c in dict.fromkeys(consultation_ids)],
        )
        self.classes.add(consultation_class)
        logger.info(f"Scheduled class '{consultation_class.name}' ({consultation_class.base_status.value})")
        return consultation_class

    def assign_teacher(
        self,
        principal: Principal,
        class_id: UUID,
        now: datetime,
        teacher_id: UUID | None = None,
    ) -> ConsultationClass:
        """
        Give a PendingAssignment class its teacher.

        A teacher assigns themselves; an admin or the system names the teacher.
        """
        require_staff(principal, "assign consultation classes")
        consultation_class = self.classes.require(class_id)
        if principal.role is Role.TEACHER:
            teacher_id = principal.user_id
        if teacher_id is None:
            raise ValidationError("A teacher is required")
        if consultation_class.cancelled_at is not None:
            raise InvalidStateTransitionError("Class was cancelled", details={"class_id": str(class_id)})
        if consultation_class.base_status is not BaseClassStatus.PENDING_ASSIGNMENT:
            raise InvalidStateTransitionError(
                "Class already has a teacher", details={"class_id": str(class_id)}
            )
        if ensure_utc(now) >= ensure_utc(consultation_class.end_at):
            raise InvalidStateTransitionError("Class window has passed", details={"class_id": str(class_id)})

        consultation_class.teacher_id = teacher_id
        consultation_class.base_status = BaseClassStatus.SCHEDULED
        self.db.flush()
        logger.info(f"Class {class_id} assigned to teacher {teacher_id}")
        return consultation_class

    def cancel(self, principal: Principal, class_id: UUID, reason: str, now: datetime) -> ConsultationClass:
        """Cancel a class that has not started yet."""
        require_staff(principal, "cancel consultation classes")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A cancellation reason is required")

        consultation_class = self.classes.require(class_id)
        self._require_responsible(principal, consultation_class)
        status = resolve_for(consultation_class, now)
        if status is not ClassStatus.SCHEDULED:
            raise InvalidStateTransitionError(
                f"Class is {status.value}", details={"class_id": str(class_id)}
            )

        consultation_class.cancelled_at = ensure_utc(now)
        consultation_class.outcome_reason = reason
        self.db.flush()
        logger.info(f"Class {class_id} cancelled: {reason}")
        return consultation_class

    def finalize(
        self,
        principal: Principal,
        class_id: UUID,
        held: bool,
        reviewed_ids: Iterable[UUID] = (),
        reason: str | None = None,
        *,
        now: datetime,
    ) -> ConsultationClass:
        """
        Record whether the class took place.

        Held: the listed consultations are marked reviewed. Not held: a reason
        is required. Allowed once the class has started and only once.
        """
        require_staff(principal, "finalize consultation classes")
        consultation_class = self.classes.require(class_id)
        self._require_responsible(principal, consultation_class)

        if consultation_class.base_status is not BaseClassStatus.SCHEDULED:
            raise InvalidStateTransitionError(
                "Class outcome already recorded", details={"class_id": str(class_id)}
            )
        status = resolve_for(consultation_class, now)
        if status not in (ClassStatus.IN_PROGRESS, ClassStatus.CLOSING_SOON):
            raise InvalidStateTransitionError(
                f"Class is {status.value}", details={"class_id": str(class_id)}
            )

        if held:
            items = {item.consultation_id: item for item in consultation_class.review_items}
            reviewed = list(dict.fromkeys(reviewed_ids))
            unknown = [str(c) for c in reviewed if c not in items]
            if unknown:
                raise ValidationError(
                    "Consultations are not part of this class", details={"consultation_ids": unknown}
                )
            for consultation_id in reviewed:
                items[consultation_id].reviewed = True
            consultation_class.base_status = BaseClassStatus.HELD
            consultation_class.outcome_reason = (reason or "").strip() or None
        else:
            reason = (reason or "").strip()
            if not reason:
                raise ValidationError("A reason is required when the class was not held")
            consultation_class.base_status = BaseClassStatus.NOT_HELD
            consultation_class.outcome_reason = reason

        self.db.flush()
        logger.info(f"Class {class_id} finalized as {consultation_class.base_status.value}")
        return consultation_class

    def status(self, class_id: UUID, now: datetime) -> ClassStatus:
        return resolve_for(self.classes.require(class_id), now)

    @staticmethod
    def _require_responsible(principal: Principal, consultation_class: ConsultationClass) -> None:
        if principal.role is Role.TEACHER and consultation_class.teacher_id != principal.user_id:
            raise PermissionDeniedError("Only the responsible teacher may manage this class")
