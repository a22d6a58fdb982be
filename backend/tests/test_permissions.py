"""
Permission tests: role defaults, per-user overrides and the mutation kind
to action mapping.
"""

import pytest

from stocksync.permissions import (
    ACTION_ADD,
    ACTION_DELETE,
    ACTION_EDIT,
    ACTION_VIEW,
    INVENTORY_PERMISSIONS,
    get_all_permission_codes,
    get_permission_code_for_action,
    validate_permission_code,
)
from stocksync.services.permission_service import (
    PermissionDenied,
    RolePermissions,
    require_mutation_permission,
    require_permission,
)
from stocksync.services.session_service import make_context
from stocksync.validation import ValidationError


# =============================================================================
# CATALOGUE
# =============================================================================

class TestCatalogue:
    def test_every_action_has_a_code(self):
        for action in (ACTION_VIEW, ACTION_ADD, ACTION_EDIT, ACTION_DELETE):
            assert validate_permission_code(get_permission_code_for_action(action))

    def test_unknown_action_has_no_code(self):
        assert get_permission_code_for_action("approve") is None

    def test_one_code_per_action(self):
        actions = [perm[4] for perm in INVENTORY_PERMISSIONS]
        assert sorted(actions) == sorted((ACTION_VIEW, ACTION_ADD, ACTION_EDIT, ACTION_DELETE))
        assert len(get_all_permission_codes()) == 4


# =============================================================================
# ROLES
# =============================================================================

class TestRolePermissions:
    @pytest.mark.parametrize("action", [ACTION_VIEW, ACTION_ADD, ACTION_EDIT, ACTION_DELETE])
    def test_admin_has_everything(self, action):
        assert RolePermissions("admin").has_permission(action)

    @pytest.mark.parametrize("action,allowed", [
        (ACTION_VIEW, True),
        (ACTION_ADD, True),
        (ACTION_EDIT, False),
        (ACTION_DELETE, False),
    ])
    def test_employee_defaults(self, action, allowed):
        assert RolePermissions("employee").has_permission(action) is allowed

    def test_unknown_role_fails_closed(self):
        perms = RolePermissions("visitor")
        assert not any(perms.has_permission(a) for a in (ACTION_VIEW, ACTION_ADD, ACTION_EDIT, ACTION_DELETE))

    def test_grant_override(self):
        assert RolePermissions("employee", grants=["EDIT_INVENTORY"]).has_permission(ACTION_EDIT)

    def test_deny_wins_over_grant(self):
        perms = RolePermissions("admin", grants=["DELETE_INVENTORY"], denies=["DELETE_INVENTORY"])
        assert not perms.has_permission(ACTION_DELETE)

    def test_unknown_override_code_rejected(self):
        with pytest.raises(ValidationError):
            RolePermissions("employee", grants=["EDIT_EVERYTHING"])
        with pytest.raises(ValidationError):
            make_context(user_id=1, role="admin", denies=["NOPE"])


# =============================================================================
# CHECKS
# =============================================================================

class TestRequirePermission:
    def test_denied_carries_action_and_role(self, employee):
        with pytest.raises(PermissionDenied) as exc:
            require_permission(employee, ACTION_DELETE)
        assert exc.value.action == ACTION_DELETE
        assert exc.value.role == "employee"

    def test_granted_returns_quietly(self, admin):
        require_permission(admin, ACTION_DELETE)

    @pytest.mark.parametrize("kind,allowed", [("create", True), ("update", False), ("delete", False)])
    def test_mutation_kinds_map_to_actions(self, employee, kind, allowed):
        if allowed:
            require_mutation_permission(employee, kind)
        else:
            with pytest.raises(PermissionDenied):
                require_mutation_permission(employee, kind)

    def test_contexts_are_independent(self):
        alice = make_context(user_id=1, role="employee", grants=["DELETE_INVENTORY"])
        bob = make_context(user_id=2, role="employee")

        assert alice.has_permission(ACTION_DELETE)
        assert not bob.has_permission(ACTION_DELETE)
        assert alice.user_id == "1"
