"""
Error taxonomy for the reinforcement engine.

Every error carries a stable ``error_code`` so an outer HTTP layer can map it:

- validation_error          -> 400
- permission_denied         -> 403
- not_found                 -> 404
- conflict / invalid_state  -> 409
- domain_rule               -> 422
"""

from __future__ import annotations

from typing import Any


class ReinforceError(Exception):
    """Base exception for all engine errors."""

    error_code = "reinforce_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": self.message, "details": self.details}


class ValidationError(ReinforceError):
    """Raised when input shape or range is invalid."""

    error_code = "validation_error"


class NotFoundError(ReinforceError):
    """Raised when a session, grade, question, difficulty or class does not exist."""

    error_code = "not_found"


class PermissionDeniedError(ReinforceError):
    """Raised when the acting principal may not perform the operation."""

    error_code = "permission_denied"


class ConflictError(ReinforceError):
    """Raised when the current state of an aggregate forbids the operation."""

    error_code = "conflict"


class InvalidStateTransitionError(ConflictError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    error_code = "invalid_state"


class SessionExpiredError(ConflictError):
    """Raised when a session is started after its deadline."""

    error_code = "session_expired"


class PendingSessionExistsError(ConflictError):
    """Raised when a student already has a teacher-assigned pending session."""

    error_code = "pending_session_exists"


class DomainRuleError(ReinforceError):
    """Raised when a business rule rejects an otherwise valid request."""

    error_code = "domain_rule"


class NoDeficiencyError(DomainRuleError):
    """Raised when a session is requested for a difficulty the student has mastered."""

    error_code = "no_deficiency"


class InsufficientContentError(DomainRuleError):
    """Raised when no questions are available to assemble a session."""

    error_code = "insufficient_content"
