# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category, action)

from .categories import PermissionCategory


ACTION_VIEW = "view"
ACTION_ADD = "add"
ACTION_EDIT = "edit"
ACTION_DELETE = "delete"
ACTIONS = (ACTION_VIEW, ACTION_ADD, ACTION_EDIT, ACTION_DELETE)


# -- INVENTORY --

INVENTORY_PERMISSIONS = [
    (
        "VIEW_INVENTORY",
        "View Inventory",
        "View products, transactions and alert badges",
        PermissionCategory.INVENTORY,
        ACTION_VIEW,
    ),
    (
        "ADD_INVENTORY",
        "Add Inventory",
        "Create products and record transactions",
        PermissionCategory.INVENTORY,
        ACTION_ADD,
    ),
    (
        "EDIT_INVENTORY",
        "Edit Inventory",
        "Change existing products and transactions",
        PermissionCategory.INVENTORY,
        ACTION_EDIT,
    ),
    (
        "DELETE_INVENTORY",
        "Delete Inventory",
        "Delete products and transactions",
        PermissionCategory.INVENTORY,
        ACTION_DELETE,
    ),
]


PERMISSION_DEFINITIONS = INVENTORY_PERMISSIONS
