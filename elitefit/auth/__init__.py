"""
Authentication and authorization for the Elite Fitness backend.

Design principles:
1. One facade (AuthService) for every flow
2. Roles give defaults, per-principal overrides adjust them
3. Authentication (401) and authorization (403) fail separately
4. Zero boilerplate in route handlers: Depends(require(...))
"""

from elitefit.auth.context import AuthContext
from elitefit.auth.dependencies import (
    require,
    require_all,
    require_any,
    require_auth,
    require_kind,
    require_min_role,
    require_owner,
    require_policy,
)
from elitefit.auth.errors import (
    AccountInactiveError,
    AccountLockedError,
    AuthError,
    ForbiddenError,
    IdentityProfileIncompleteError,
    InvalidCredentialsError,
    PrincipalKindMismatchError,
    ProviderUnavailableError,
    SigningKeyError,
    TokenError,
    TokenExpiredError,
    TokenMalformedError,
    TokenRevokedError,
    TokenSignatureError,
    UnauthenticatedError,
)
from elitefit.auth.permissions import (
    DEFAULT_PERMISSIONS,
    ROLE_HIERARCHY,
    Permission,
    effective_permissions,
)
from elitefit.auth.policies import (
    Policy,
    require_all_permissions,
    require_any_permission,
    require_authenticated,
    require_ownership,
    require_permission,
    require_principal_kind,
    require_role,
)
from elitefit.auth.service import AuthService
from elitefit.auth.tokens import AccessToken, CredentialPayload, TokenCodec, TokenPair
from elitefit.auth.routes import router as auth_router

__all__ = [
    # Facade
    "AuthService",
    "AuthContext",
    # FastAPI dependencies
    "require",
    "require_any",
    "require_all",
    "require_auth",
    "require_kind",
    "require_min_role",
    "require_owner",
    "require_policy",
    # Policies
    "Policy",
    "require_authenticated",
    "require_principal_kind",
    "require_role",
    "require_permission",
    "require_any_permission",
    "require_all_permissions",
    "require_ownership",
    # Permissions
    "Permission",
    "ROLE_HIERARCHY",
    "DEFAULT_PERMISSIONS",
    "effective_permissions",
    # Tokens
    "TokenCodec",
    "TokenPair",
    "AccessToken",
    "CredentialPayload",
    # Errors
    "AuthError",
    "TokenError",
    "TokenMalformedError",
    "TokenSignatureError",
    "TokenExpiredError",
    "TokenRevokedError",
    "SigningKeyError",
    "InvalidCredentialsError",
    "PrincipalKindMismatchError",
    "AccountLockedError",
    "AccountInactiveError",
    "IdentityProfileIncompleteError",
    "ProviderUnavailableError",
    "UnauthenticatedError",
    "ForbiddenError",
    # Router
    "auth_router",
]
