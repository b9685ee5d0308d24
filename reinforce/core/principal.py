"""
Acting principal supplied by the authentication collaborator.

The engine trusts the identity it is handed and only checks that the role is
appropriate for the operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from reinforce.core.errors import PermissionDeniedError


class Role(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"
    SYSTEM = "system"


STAFF_ROLES = frozenset({Role.TEACHER, Role.ADMIN, Role.SYSTEM})


@dataclass(frozen=True)
class Principal:
    user_id: UUID | None
    role: Role

    @classmethod
    def system(cls) -> Principal:
        return cls(user_id=None, role=Role.SYSTEM)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def require_staff(principal: Principal, action: str) -> None:
    """Only teachers, admins and the system may manage sessions and classes."""
    if not principal.is_staff:
        raise PermissionDeniedError(
            f"Role '{principal.role.value}' may not {action}",
            details={"role": principal.role.value},
        )


def require_owner(principal: Principal, student_id: UUID, action: str) -> None:
    """Only the session's own student may take it."""
    if principal.role is not Role.STUDENT or principal.user_id != student_id:
        raise PermissionDeniedError(
            f"Only the assigned student may {action} this session",
            details={"student_id": str(student_id)},
        )
