"""
Consultation class status resolver.

The displayed status of a class is never stored. It is derived on every read
from the scheduled window, the cancellation marker and the recorded outcome:

1. cancelled                          -> Cancelled
2. base NotHeld                       -> NotHeld
3. base PendingAssignment             -> PendingAssignment (no time transition)
4. now < start                        -> Scheduled
   start <= now < end                 -> InProgress
   now >= end, base Held              -> Held
   now >= end, outcome not recorded   -> ClosingSoon
"""

from __future__ import annotations

from datetime import datetime

from reinforce.core.clock import ensure_utc
from reinforce.core.states import BaseClassStatus, ClassStatus
from reinforce.db.models import ConsultationClass


def resolve_class_status(
    now: datetime,
    start_at: datetime,
    end_at: datetime,
    base_status: BaseClassStatus,
    cancelled_at: datetime | None = None,
) -> ClassStatus:
    if cancelled_at is not None:
        return ClassStatus.CANCELLED
    if base_status is BaseClassStatus.NOT_HELD:
        return ClassStatus.NOT_HELD
    if base_status is BaseClassStatus.PENDING_ASSIGNMENT:
        return ClassStatus.PENDING_ASSIGNMENT

    now = ensure_utc(now)
    if now < ensure_utc(start_at):
        return ClassStatus.SCHEDULED
    if now < ensure_utc(end_at):
        return ClassStatus.IN_PROGRESS
    if base_status is BaseClassStatus.HELD:
        return ClassStatus.HELD
    return ClassStatus.CLOSING_SOON


def resolve_for(consultation_class: ConsultationClass, now: datetime) -> ClassStatus:
    """Resolve the status of a stored class."""
    return resolve_class_status(
        now,
        consultation_class.start_at,
        consultation_class.end_at,
        consultation_class.base_status,
        consultation_class.cancelled_at,
    )
