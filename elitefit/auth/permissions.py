"""
Roles, permissions, and how they combine.

This defines WHAT principals can do, not HOW we check it.
The actual checking happens in policies.py.
"""

from __future__ import annotations

from typing import Any

from elitefit.core.models import Principal, Role


WILDCARD = "*"


class Permission:
    """Permission names used across the backend."""

    # System
    MANAGE_ALL = "manage_all"
    DELETE_USERS = "delete_users"
    MODIFY_SYSTEM = "modify_system"
    CREATE_USERS = "create_users"
    VIEW_ANALYTICS = "view_analytics"

    # Clients
    MANAGE_CLIENTS = "manage_clients"
    VIEW_CLIENTS = "view_clients"
    UPDATE_CLIENTS = "update_clients"

    # Payments
    MANAGE_PAYMENTS = "manage_payments"
    PROCESS_PAYMENTS = "process_payments"

    # Catalogue
    MANAGE_PRODUCTS = "manage_products"
    VIEW_PRODUCTS = "view_products"
    UPDATE_PRODUCTS = "update_products"
    MANAGE_PROMOTIONS = "manage_promotions"

    # Members
    VIEW_OWN_PROFILE = "view_own_profile"
    UPDATE_OWN_PROFILE = "update_own_profile"
    VIEW_OWN_PAYMENTS = "view_own_payments"
    MAKE_PAYMENTS = "make_payments"
    USE_GYM_SERVICES = "use_gym_services"


# =============================================================================
# Role Mappings
# =============================================================================


# Strict total order; higher outranks lower
ROLE_HIERARCHY: dict[Role, int] = {
    Role.SUPER_ADMIN: 4,
    Role.ADMIN: 3,
    Role.STAFF: 2,
    Role.MEMBER: 1,
}


# What each role gets before per-principal overrides
DEFAULT_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.SUPER_ADMIN: frozenset({
        Permission.MANAGE_ALL,
        Permission.DELETE_USERS,
        Permission.MODIFY_SYSTEM,
        Permission.VIEW_ANALYTICS,
        Permission.MANAGE_PAYMENTS,
        Permission.MANAGE_CLIENTS,
        Permission.MANAGE_PRODUCTS,
        Permission.MANAGE_PROMOTIONS,
    }),
    Role.ADMIN: frozenset({
        Permission.MANAGE_CLIENTS,
        Permission.MANAGE_PRODUCTS,
        Permission.MANAGE_PAYMENTS,
        Permission.VIEW_ANALYTICS,
        Permission.MANAGE_PROMOTIONS,
        Permission.CREATE_USERS,
    }),
    Role.STAFF: frozenset({
        Permission.VIEW_CLIENTS,
        Permission.UPDATE_CLIENTS,
        Permission.PROCESS_PAYMENTS,
        Permission.VIEW_PRODUCTS,
        Permission.UPDATE_PRODUCTS,
    }),
    Role.MEMBER: frozenset({
        Permission.VIEW_OWN_PROFILE,
        Permission.UPDATE_OWN_PROFILE,
        Permission.VIEW_OWN_PAYMENTS,
        Permission.MAKE_PAYMENTS,
        Permission.USE_GYM_SERVICES,
    }),
}


def role_rank(role: Role | str | None) -> int:
    """Position in the hierarchy. No role ranks as member; unknown roles rank 0."""
    if role is None:
        return ROLE_HIERARCHY[Role.MEMBER]
    try:
        return ROLE_HIERARCHY[Role(role)]
    except ValueError:
        return 0


def effective_permissions(
    role: Role | None,
    overrides: dict[str, bool] | None = None,
) -> frozenset[str]:
    """
    Resolve the permission set for a role plus explicit overrides.

    defaults ∪ {allowed overrides} − {denied overrides}.
    super_admin is the wildcard and ignores overrides entirely.
    """
    role = role or Role.MEMBER
    if role == Role.SUPER_ADMIN:
        return frozenset({WILDCARD})

    overrides = overrides or {}
    perms = set(DEFAULT_PERMISSIONS.get(role, frozenset()))
    perms.update(name for name, allowed in overrides.items() if allowed is True)
    perms.difference_update(name for name, allowed in overrides.items() if allowed is False)
    return frozenset(perms)


def has_permission(permissions: frozenset[str], name: str) -> bool:
    """Check a resolved set, honouring the wildcard."""
    return WILDCARD in permissions or name in permissions


def describe_permissions(principal: Principal) -> dict[str, Any]:
    """Breakdown of a principal's permissions for display."""
    role = principal.effective_role
    effective = effective_permissions(principal.role, principal.permissions)
    return {
        "role": role.value,
        "role_level": role_rank(role),
        "effective": sorted(effective),
        "defaults": sorted(DEFAULT_PERMISSIONS.get(role, frozenset())),
        "overrides": dict(principal.permissions),
    }
