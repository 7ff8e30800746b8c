"""Stock permissions for the canteen RBAC.

Roles and per-user overrides are managed by the platform's role service;
their effective permission set arrives embedded in the JWT.  This module
only knows the stock permissions and how to match them.

Permission naming: `<resource>.<action>`
"""

from __future__ import annotations


ALL_PERMISSIONS: set[str] = {
    "stock.read",       # view ledgers, monthly reports, alerts
    "stock.write",      # add / edit entries, record consumption, set min level
    "stock.delete",     # delete entries, clear a month
    "reports.export",   # download CSV reports
}

# Roles that are not bound to a list of theaters
GLOBAL_ROLES: set[str] = {"super_admin"}


def has_permission(user_permissions: list[str], required: str) -> bool:
    """Check a permission, honouring `*` and `<resource>.*` wildcards."""
    if "*" in user_permissions or required in user_permissions:
        return True
    resource = required.split(".", 1)[0]
    return f"{resource}.*" in user_permissions
