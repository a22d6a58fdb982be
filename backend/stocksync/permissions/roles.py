# Overview: Default permission sets per role.

ROLE_ADMIN = "admin"
ROLE_EMPLOYEE = "employee"

DEFAULT_ROLE_PERMISSIONS = {
    # Administrator - every action
    ROLE_ADMIN: [
        "VIEW_INVENTORY",
        "ADD_INVENTORY",
        "EDIT_INVENTORY",
        "DELETE_INVENTORY",
    ],
    # Employee - look up and add only
    ROLE_EMPLOYEE: [
        "VIEW_INVENTORY",
        "ADD_INVENTORY",
    ],
}
