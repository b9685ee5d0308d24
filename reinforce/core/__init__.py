"""
Core value types shared by every module: grades, errors, clock and principal.
"""

from .clock import Clock, FixedClock, SystemClock, ensure_utc
from .errors import (
    ConflictError,
    DomainRuleError,
    InsufficientContentError,
    InvalidStateTransitionError,
    NoDeficiencyError,
    NotFoundError,
    PendingSessionExistsError,
    PermissionDeniedError,
    ReinforceError,
    SessionExpiredError,
    ValidationError,
)
from .grades import Direction, Grade, is_deficient, rank, step
from .principal import Principal, Role

__all__ = [
    # Grades
    "Grade",
    "Direction",
    "rank",
    "step",
    "is_deficient",
    # Clock
    "Clock",
    "SystemClock",
    "FixedClock",
    "ensure_utc",
    # Principal
    "Principal",
    "Role",
    # Errors
    "ReinforceError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "InvalidStateTransitionError",
    "SessionExpiredError",
    "PendingSessionExistsError",
    "DomainRuleError",
    "NoDeficiencyError",
    "InsufficientContentError",
]
