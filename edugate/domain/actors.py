from __future__ import annotations

from dataclasses import dataclass


ROLE_SUPER_ADMIN = "SUPER_ADMIN"
ROLE_SCHOOL_ADMIN = "SCHOOL_ADMIN"
ROLE_TEACHER = "TEACHER"
ROLE_STUDENT = "STUDENT"

ROLES = (ROLE_SUPER_ADMIN, ROLE_SCHOOL_ADMIN, ROLE_TEACHER, ROLE_STUDENT)
STAFF_ROLES = frozenset({ROLE_SCHOOL_ADMIN, ROLE_TEACHER})


def normalize_role(role: str) -> str:
    # Accept "school_admin", "School-Admin" and similar spellings from older tokens.
    normalized = role.strip().upper().replace("-", "_").replace(" ", "_")
    if normalized not in ROLES:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


@dataclass(frozen=True)
class Actor:
    """Authenticated identity for the current request.

    Built from verified token claims and never persisted. ``current_tenant_id``
    is the tenant the login flow bound the session to, when it bound one.
    """

    user_id: str
    role: str
    current_tenant_id: str | None = None
    email: str | None = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
