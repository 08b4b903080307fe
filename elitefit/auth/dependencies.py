"""
FastAPI wiring for authentication and authorization.

Usage:
    @router.get("/admin/principals/{principal_id}")
    async def view(ctx: AuthContext = Depends(require("view_clients"))):
        ...

    @router.post("/members/{member_id}/check-in")
    async def check_in(member_id: str, ctx: AuthContext = Depends(require_owner("member_id"))):
        ...

Every dependency resolves the bearer token through the AuthService on
app.state, so revocation and deactivation are honoured per request.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from elitefit.auth.context import AuthContext
from elitefit.auth.errors import AuthError, ForbiddenError, UnauthenticatedError
from elitefit.auth.policies import Policy
from elitefit.auth.service import AuthService
from elitefit.core.models import PrincipalKind, Role

logger = logging.getLogger(__name__)

optional_bearer = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def error_detail(error: AuthError) -> dict[str, str]:
    return {"error": error.code, "message": error.message}


async def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
) -> str | None:
    if not credentials:
        return None
    return credentials.credentials


async def get_current_context(
    response: Response,
    token: str | None = Depends(get_bearer_token),
    auth: AuthService = Depends(get_auth_service),
) -> AuthContext:
    """
    Resolve the request's bearer token, or 401.

    When the token is close to expiry the response carries
    X-Token-Expiring and X-Token-Refresh-Suggested so clients refresh early.
    """
    try:
        principal = await auth.verify_request(token)
    except UnauthenticatedError as e:
        raise HTTPException(
            status_code=401,
            detail=error_detail(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    info = auth.token_info(token)
    if info and info["expiring_soon"]:
        response.headers["X-Token-Expiring"] = "true"
        response.headers["X-Token-Refresh-Suggested"] = "true"

    return AuthContext.from_principal(principal)


# =============================================================================
# Main Interface - the require() function
# =============================================================================


def require(
    *permissions: str,
    min_role: Role | None = None,
    kind: PrincipalKind | None = None,
) -> Callable:
    """
    Require permissions to access a route (all must be present).

    Returns:
        FastAPI Depends that resolves to AuthContext
    """
    return require_policy(Policy(permissions=list(permissions), min_role=min_role, kind=kind))


def require_any(*permissions: str) -> Callable:
    """Require ANY of the listed permissions."""
    return require_policy(Policy(permissions=list(permissions), require_all=False))


def require_all(*permissions: str) -> Callable:
    """Require ALL of the listed permissions (same as require)."""
    return require(*permissions)


def require_auth() -> Callable:
    """Just require authentication, no specific permission."""
    return require_policy(Policy())


def require_min_role(role: Role | str) -> Callable:
    """Require a role at or above the given one."""
    return require_policy(Policy(min_role=Role(role)))


def require_kind(kind: PrincipalKind | str) -> Callable:
    """Only members (client) or only back-office users (user); 403 USER_TYPE_MISMATCH otherwise."""
    return require_policy(Policy(kind=PrincipalKind(kind)))


def require_owner(param: str = "member_id", admin_override: bool = True) -> Callable:
    """Require the path parameter to name the caller's own record."""

    async def dependency(
        request: Request,
        ctx: AuthContext = Depends(get_current_context),
        auth: AuthService = Depends(get_auth_service),
    ) -> AuthContext:
        owner_id = request.path_params.get(param)
        if owner_id is None:
            # Route has no such path parameter; deny rather than skip the check
            logger.error(f"require_owner: no path parameter '{param}' on {request.url.path}")
            raise HTTPException(
                status_code=403,
                detail=error_detail(ForbiddenError("Resource owner could not be determined")),
            )
        policy = Policy(owner_id=owner_id, admin_override=admin_override)
        return _authorize(auth, ctx, policy)

    return dependency


# =============================================================================
# Internal: Create the FastAPI Dependency
# =============================================================================


def require_policy(policy: Policy) -> Callable:
    """Create a FastAPI Depends from a policy."""

    async def dependency(
        ctx: AuthContext = Depends(get_current_context),
        auth: AuthService = Depends(get_auth_service),
    ) -> AuthContext:
        return _authorize(auth, ctx, policy)

    return dependency


def _authorize(auth: AuthService, ctx: AuthContext, policy: Policy) -> AuthContext:
    try:
        return auth.authorize(ctx, policy)
    except ForbiddenError as e:
        raise HTTPException(status_code=403, detail=error_detail(e))
