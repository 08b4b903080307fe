"""
Principals and identity bindings.

These are the values that flow between the store, the linker, the token
codec, and the auth service. Nothing here talks to storage.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from elitefit.core.utils import utc_now


class PrincipalKind(str, Enum):
    """What sort of account a principal is. Carried in every access token."""

    USER = "user"        # Back-office account: super_admin, admin, staff
    CLIENT = "client"    # Gym member


class Role(str, Enum):
    """Back-office role. Members carry no role and resolve as MEMBER."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    STAFF = "staff"
    MEMBER = "member"


class AuthProvider(str, Enum):
    """How a principal signs in."""

    LOCAL = "local"
    GOOGLE = "google"
    FACEBOOK = "facebook"
    MULTIPLE = "multiple"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class Audience(str, Enum):
    WEB = "web"
    MOBILE = "mobile"


USER_ROLES = {Role.SUPER_ADMIN, Role.ADMIN, Role.STAFF}


# =============================================================================
# Principal
# =============================================================================


class IdentityBinding(BaseModel):
    """A link between a principal and an account at an external provider."""
    provider: str
    external_id: str
    linked_at: datetime = Field(default_factory=utc_now)


class Principal(BaseModel):
    """A local account (back-office user or gym member)."""

    id: str
    kind: PrincipalKind
    email: str
    password_hash: str | None = None  # None for identity-only accounts
    first_name: str = ""
    last_name: str = ""

    identities: list[IdentityBinding] = Field(default_factory=list)
    auth_provider: AuthProvider = AuthProvider.LOCAL
    email_verified: bool = False

    role: Role | None = None
    permissions: dict[str, bool] = Field(default_factory=dict)

    is_active: bool = True
    failed_attempts: int = 0
    locked_until: datetime | None = None
    last_login: datetime | None = None

    # Gamification (members only)
    points: int = 0
    level: int = 1
    total_check_ins: int = 0
    last_check_in: datetime | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_kind_and_role(self) -> Principal:
        self.email = self.email.strip().lower()
        if self.kind == PrincipalKind.USER and self.role not in USER_ROLES:
            raise ValueError("user principals need a super_admin, admin or staff role")
        if self.kind == PrincipalKind.CLIENT and self.role is not None:
            raise ValueError("client principals carry no role")
        return self

    @property
    def effective_role(self) -> Role:
        return self.role or Role.MEMBER

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def binding_for(self, provider: str) -> IdentityBinding | None:
        for binding in self.identities:
            if binding.provider == provider:
                return binding
        return None

    def bind_identity(self, provider: str, external_id: str) -> None:
        """Attach a provider binding, replacing any earlier one for that provider."""
        self.identities = [b for b in self.identities if b.provider != provider]
        self.identities.append(IdentityBinding(provider=provider, external_id=external_id))

    def check_in(self, now: datetime | None = None) -> None:
        """Record a gym visit: 10 points, level recalculated, never lowered."""
        self.last_check_in = now or utc_now()
        self.total_check_ins += 1
        self.points += 10
        self.level = max(self.level, self.points // 100 + 1)


class ExternalProfile(BaseModel):
    """Profile asserted by an external identity provider."""
    id: str
    email: str | None = None
    email_verified: bool = True
    first_name: str = ""
    last_name: str = ""
    picture_url: str | None = None
