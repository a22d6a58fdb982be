# Overview: Utility functions for permission lookups and validation.

from .definitions import PERMISSION_DEFINITIONS


def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def get_permission_code_for_action(action):
    """Map an action (view/add/edit/delete) to its permission code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[4] == action:
            return perm[0]
    return None


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()
