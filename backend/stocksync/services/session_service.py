# Overview: Explicit session context passed into every sync core call.

from __future__ import annotations

from dataclasses import dataclass, field

from .permission_service import PermissionChecker, RolePermissions


@dataclass(frozen=True)
class SessionContext:
    """
    Who is acting, and what they may do.

    Passed explicitly into the mutation queue and the sync core so several
    independent cores (and users) can coexist in one process.
    """
    user_id: str
    role: str
    permissions: PermissionChecker = field(repr=False)

    def has_permission(self, action: str) -> bool:
        return self.permissions.has_permission(action)


def make_context(*, user_id: str, role: str, grants=(), denies=()) -> SessionContext:
    return SessionContext(
        user_id=str(user_id),
        role=role,
        permissions=RolePermissions(role, grants=grants, denies=denies),
    )
