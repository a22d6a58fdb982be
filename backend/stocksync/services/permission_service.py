# Overview: Service-layer operations for permission checks on local mutations.

"""
Permission Checking for Local Mutations

WHY: A mutation the acting role may not perform must be rejected before it
touches the local snapshot or the queue; it is never even queued.

DESIGN PRINCIPLES:
- Fail closed: deny by default, require an explicit permission grant
- Log denials only: grants are not logged
- Explicit context: the acting session is passed in, never read from
  ambient global state
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from ..permissions import (
    ACTION_ADD,
    ACTION_DELETE,
    ACTION_EDIT,
    DEFAULT_ROLE_PERMISSIONS,
    get_permission_code_for_action,
    validate_permission_code,
)
from ..validation import KIND_CREATE, KIND_DELETE, KIND_UPDATE, ValidationError

logger = logging.getLogger(__name__)


KIND_ACTIONS = {
    KIND_CREATE: ACTION_ADD,
    KIND_UPDATE: ACTION_EDIT,
    KIND_DELETE: ACTION_DELETE,
}


class PermissionDenied(Exception):
    """Raised when the acting role lacks the required permission."""

    def __init__(self, action: str, role: str | None = None):
        self.action = action
        self.role = role
        super().__init__(f"Permission denied: {action}" + (f" (role {role})" if role else ""))


class PermissionChecker(Protocol):
    def has_permission(self, action: str) -> bool: ...


class RolePermissions:
    """
    Permission collaborator backed by the default role table.

    grants/denies are per-user overrides (permission codes) applied on top of
    the role, DENY winning over GRANT. Unknown codes are rejected.
    """

    def __init__(self, role: str, *, grants: Iterable[str] = (), denies: Iterable[str] = ()):
        grants, denies = list(grants), list(denies)
        for code in grants + denies:
            if not validate_permission_code(code):
                raise ValidationError(f"Unknown permission code: {code!r}")
        self.role = role
        codes = set(DEFAULT_ROLE_PERMISSIONS.get(role, ()))
        codes.update(grants)
        codes.difference_update(denies)
        self.permission_codes = frozenset(codes)

    def has_permission(self, action: str) -> bool:
        code = get_permission_code_for_action(action)
        return code is not None and code in self.permission_codes

    def __repr__(self) -> str:
        return f"<RolePermissions role={self.role!r} codes={sorted(self.permission_codes)}>"


def require_permission(context, action: str) -> None:
    if context is None or not context.has_permission(action):
        role = getattr(context, "role", None)
        logger.warning(
            "Permission denied: user=%s role=%s action=%s",
            getattr(context, "user_id", None), role, action,
        )
        raise PermissionDenied(action, role)


def require_mutation_permission(context, kind: str) -> None:
    require_permission(context, KIND_ACTIONS[kind])
