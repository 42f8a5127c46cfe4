"""
Permission codes and role mappings.

Permissions are derived from the user's role; there are no per-user grants.
Routes check codes, never role names, so moving a capability between roles
is a change to ROLE_PERMISSIONS only.
"""

from .models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_TECHNICIAN

# Each permission is defined as: (code, description)
PERMISSION_DEFINITIONS = [
    ("VIEW_INVENTORY", "View items, stock levels and stock movements"),
    ("MANAGE_INVENTORY", "Create and edit inventory items"),
    ("ADJUST_STOCK", "Manually add or deduct stock"),
    ("DELETE_ITEM", "Deactivate inventory items"),
    ("VIEW_SALES", "View sales and invoices"),
    ("CREATE_SALE", "Check out retail sales"),
    ("DELETE_SALE", "Delete sales and restock their lines"),
    ("VIEW_TICKETS", "View service tickets"),
    ("MANAGE_TICKETS", "Open tickets, change status, attach parts, set fees"),
    ("CANCEL_TICKET", "Cancel service tickets"),
    ("MANAGE_USERS", "Create, edit and deactivate staff accounts"),
]

PERMISSION_CODES = {code for code, _ in PERMISSION_DEFINITIONS}

ROLE_PERMISSIONS = {
    # Admin gets ALL permissions
    ROLE_ADMIN: set(PERMISSION_CODES),
    ROLE_CASHIER: {
        "VIEW_INVENTORY",
        "MANAGE_INVENTORY",
        "VIEW_SALES",
        "CREATE_SALE",
        "VIEW_TICKETS",
    },
    ROLE_TECHNICIAN: {
        "VIEW_INVENTORY",
        "VIEW_SALES",
        "VIEW_TICKETS",
        "MANAGE_TICKETS",
    },
}


def has_permission(role: str, permission_code: str) -> bool:
    return permission_code in ROLE_PERMISSIONS.get(role, set())


def permissions_for(role: str) -> list[str]:
    return sorted(ROLE_PERMISSIONS.get(role, set()))
