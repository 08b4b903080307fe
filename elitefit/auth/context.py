"""
Auth context - the "who can do what" for each request.

This is the lightweight object passed to route handlers.
It contains everything needed to make authorization decisions.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from elitefit.auth.permissions import effective_permissions, has_permission, role_rank
from elitefit.core.models import Principal, PrincipalKind, Role


@dataclass
class AuthContext:
    """
    Authorization context for a request.

    Built from the principal the request's token resolved to, so role and
    overrides reflect the stored record, not the token snapshot.

    Usage in routes:
        async def my_route(ctx: AuthContext = Depends(require("view_clients"))):
            print(f"{ctx.principal_id} ({ctx.role.value}) is in")
            if ctx.can("update_clients"):
                # do something
    """

    # Who
    principal_id: str | None = None
    kind: PrincipalKind | None = None
    email: str | None = None
    role: Role | None = None
    overrides: dict[str, bool] = field(default_factory=dict)

    # The resolved principal, when there is one
    principal: Principal | None = field(default=None, repr=False)

    # Computed permissions (cached)
    _permissions: frozenset[str] = field(default_factory=frozenset, repr=False)

    def __post_init__(self):
        """Compute permissions from role + overrides."""
        if self.principal_id is not None:
            self._permissions = effective_permissions(self.role, self.overrides)

    @classmethod
    def from_principal(cls, principal: Principal) -> AuthContext:
        return cls(
            principal_id=principal.id,
            kind=principal.kind,
            email=principal.email,
            role=principal.role,
            overrides=dict(principal.permissions),
            principal=principal,
        )

    @classmethod
    def anonymous(cls) -> AuthContext:
        """Create an anonymous context (no principal)."""
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.principal_id is not None

    @property
    def is_anonymous(self) -> bool:
        return self.principal_id is None

    @property
    def effective_role(self) -> Role:
        return self.role or Role.MEMBER

    @property
    def rank(self) -> int:
        return role_rank(self.role)

    @property
    def permissions(self) -> frozenset[str]:
        """All permissions this principal has."""
        return self._permissions

    def can(self, permission: str) -> bool:
        return self.is_authenticated and has_permission(self._permissions, permission)

    def can_any(self, *permissions: str) -> bool:
        return any(self.can(p) for p in permissions)

    def can_all(self, *permissions: str) -> bool:
        return all(self.can(p) for p in permissions)

    def owns(self, resource_id: str | None) -> bool:
        """Is this resource the principal's own record?"""
        return self.is_authenticated and resource_id == self.principal_id
