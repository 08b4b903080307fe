"""
Policies - composable authorization requirements.

A Policy is checked against an AuthContext and either passes or explains
why not. Build them with the require_* helpers:

    require_role(Role.STAFF)
    require_permission("view_clients")
    require_any_permission(["manage_clients", "view_clients"])
    require_all_permissions(["manage_payments", "view_analytics"])
    require_ownership(member_id)
    require_principal_kind(PrincipalKind.CLIENT)

FastAPI route wiring lives in dependencies.py.
"""

from __future__ import annotations

from typing import Callable

from elitefit.auth.context import AuthContext
from elitefit.auth.permissions import ROLE_HIERARCHY, role_rank
from elitefit.core.models import PrincipalKind, Role


# =============================================================================
# Policy - the core authorization type
# =============================================================================


class Policy:
    """
    A policy that can be checked.

    All configured conditions must hold. An empty permission list is
    satisfied by any authenticated principal.
    """

    def __init__(
        self,
        permissions: list[str] | None = None,
        require_all: bool = True,
        kind: PrincipalKind | None = None,
        min_role: Role | None = None,
        owner_id: str | None = None,
        admin_override: bool = True,
        custom_check: Callable[[AuthContext], bool] | None = None,
        name: str | None = None,
    ):
        self.permissions = list(permissions or [])
        self.require_all = require_all
        self.kind = kind
        self.min_role = min_role
        self.owner_id = owner_id
        self.admin_override = admin_override
        self.custom_check = custom_check
        self.name = name or self._describe()

    def check(self, ctx: AuthContext) -> tuple[bool, str | None]:
        """
        Check if context satisfies this policy.

        Returns: (allowed, error_message)
        """
        if ctx.is_anonymous:
            return False, "Authentication required"

        if self.kind_mismatch(ctx):
            return False, f"Requires a {self.kind.value} account"

        if self.min_role is not None:
            if ctx.rank < role_rank(self.min_role):
                return False, (
                    f"Requires {self.min_role.value} role or higher "
                    f"(current: {ctx.effective_role.value})"
                )

        if self.owner_id is not None:
            is_admin = self.admin_override and ctx.rank >= ROLE_HIERARCHY[Role.ADMIN]
            if not is_admin and not ctx.owns(self.owner_id):
                return False, "You can only access your own resources"

        if self.permissions:
            if self.require_all:
                missing = [p for p in self.permissions if not ctx.can(p)]
                if missing:
                    return False, f"Missing permissions: {missing}"
            elif not ctx.can_any(*self.permissions):
                return False, f"Requires one of: {self.permissions}"

        if self.custom_check and not self.custom_check(ctx):
            return False, "Custom policy check failed"

        return True, None

    def kind_mismatch(self, ctx: AuthContext) -> bool:
        return self.kind is not None and ctx.kind != self.kind

    def _describe(self) -> str:
        parts = []
        if self.kind is not None:
            parts.append(f"kind={self.kind.value}")
        if self.min_role is not None:
            parts.append(f"role>={self.min_role.value}")
        if self.owner_id is not None:
            parts.append(f"owner={self.owner_id}")
        if self.permissions:
            joiner = " & " if self.require_all else " | "
            parts.append(joiner.join(self.permissions))
        return ", ".join(parts) or "authenticated"

    def __repr__(self) -> str:
        return f"Policy({self.name})"


# =============================================================================
# Builders
# =============================================================================


def require_authenticated() -> Policy:
    """Any authenticated principal."""
    return Policy()


def require_role(min_role: Role | str) -> Policy:
    """Role rank at least min_role's rank."""
    return Policy(min_role=Role(min_role))


def require_permission(name: str) -> Policy:
    """Name must be in the effective permission set."""
    return Policy(permissions=[name])


def require_any_permission(names: list[str]) -> Policy:
    """At least one of the names."""
    return Policy(permissions=names, require_all=False)


def require_all_permissions(names: list[str]) -> Policy:
    """Every one of the names."""
    return Policy(permissions=names, require_all=True)


def require_ownership(resource_id: str, admin_override: bool = True) -> Policy:
    """Resource must be the principal's own, unless the principal is admin or above."""
    return Policy(owner_id=resource_id, admin_override=admin_override)


def require_principal_kind(kind: PrincipalKind | str) -> Policy:
    """Only principals of this kind (back-office users or members)."""
    return Policy(kind=PrincipalKind(kind))
