# Overview: Permission system package.
# Re-exports all public APIs.

from .categories import PermissionCategory
from .definitions import (
    ACTIONS,
    ACTION_ADD,
    ACTION_DELETE,
    ACTION_EDIT,
    ACTION_VIEW,
    INVENTORY_PERMISSIONS,
    PERMISSION_DEFINITIONS,
)
from .roles import DEFAULT_ROLE_PERMISSIONS, ROLE_ADMIN, ROLE_EMPLOYEE
from .helpers import (
    get_all_permission_codes,
    get_permission_code_for_action,
    validate_permission_code,
)

__all__ = [
    "PermissionCategory",
    "ACTIONS",
    "ACTION_ADD",
    "ACTION_DELETE",
    "ACTION_EDIT",
    "ACTION_VIEW",
    "INVENTORY_PERMISSIONS",
    "PERMISSION_DEFINITIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "ROLE_ADMIN",
    "ROLE_EMPLOYEE",
    "get_all_permission_codes",
    "get_permission_code_for_action",
    "validate_permission_code",
]
