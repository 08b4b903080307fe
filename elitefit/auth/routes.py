# =============================================================================
# Auth API Routes
# =============================================================================
#
# Endpoints:
#   POST /auth/register         - Create member account
#   POST /auth/login/client     - Member login
#   POST /auth/login/admin      - Back-office login
#   POST /auth/refresh          - New access token from refresh token
#   POST /auth/logout           - Revoke tokens (always succeeds)
#   GET  /auth/me               - Current principal
#   GET  /auth/permissions      - Current principal's permission breakdown
#   POST /auth/change-password  - Change password
#
# OAuth:
#   GET  /auth/providers            - List available OAuth providers
#   GET  /auth/{provider}/authorize - Get OAuth redirect URL
#   POST /auth/{provider}/callback  - Complete OAuth flow
#
# Resources:
#   POST /members/{member_id}/check-in     - Own record only (admins exempt)
#   GET  /admin/principals/{principal_id}  - Back-office users with view_clients
#
# =============================================================================

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field

from elitefit.auth.context import AuthContext
from elitefit.auth.dependencies import (
    error_detail,
    get_auth_service,
    get_bearer_token,
    require,
    require_auth,
    require_owner,
)
from elitefit.auth.errors import AuthError, ProviderUnavailableError
from elitefit.auth.permissions import Permission, describe_permissions
from elitefit.auth.service import AuthService
from elitefit.auth.tokens import AccessToken, TokenPair
from elitefit.core.models import Audience, AuthProvider, Principal, PrincipalKind, Role
from elitefit.integrations.oauth import OAuthError, OAuthManager
from elitefit.storage.base import DuplicatePrincipalError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])
members_router = APIRouter(prefix="/members", tags=["members"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# Request/Response Models
# =============================================================================

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = ""
    last_name: str = ""
    audience: Audience = Audience.WEB


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    audience: Audience = Audience.WEB


class RefreshRequest(BaseModel):
    refresh_token: str
    audience: Audience = Audience.WEB


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


class OAuthCallbackRequest(BaseModel):
    code: str
    state: str | None = None
    audience: Audience = Audience.WEB


class PrincipalResponse(BaseModel):
    """Public view of a principal (no hash, no lockout internals)."""
    id: str
    kind: PrincipalKind
    email: str
    first_name: str
    last_name: str
    role: Role
    auth_provider: AuthProvider
    email_verified: bool
    is_active: bool
    last_login: datetime | None = None
    points: int = 0
    level: int = 1
    total_check_ins: int = 0

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        return cls(
            id=principal.id,
            kind=principal.kind,
            email=principal.email,
            first_name=principal.first_name,
            last_name=principal.last_name,
            role=principal.effective_role,
            auth_provider=principal.auth_provider,
            email_verified=principal.email_verified,
            is_active=principal.is_active,
            last_login=principal.last_login,
            points=principal.points,
            level=principal.level,
            total_check_ins=principal.total_check_ins,
        )


class RegisterResponse(BaseModel):
    principal: PrincipalResponse
    tokens: TokenPair


def _http_error(error: AuthError) -> HTTPException:
    headers = {"WWW-Authenticate": "Bearer"} if error.status_code == 401 else None
    return HTTPException(status_code=error.status_code, detail=error_detail(error), headers=headers)


def get_oauth_manager(request: Request) -> OAuthManager:
    return request.app.state.oauth


# =============================================================================
# Public Endpoints
# =============================================================================

@router.post("/register", response_model=RegisterResponse)
async def register(data: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    """
    Create a new member account.

    Returns the account and its tokens.
    """
    try:
        principal, tokens = await auth.register(
            data.email, data.password, data.first_name, data.last_name, data.audience
        )
    except DuplicatePrincipalError:
        raise HTTPException(
            status_code=400,
            detail={"error": "EMAIL_TAKEN", "message": "Email already registered"},
        )

    return RegisterResponse(principal=PrincipalResponse.from_principal(principal), tokens=tokens)


@router.post("/login/client", response_model=TokenPair)
async def login_client(data: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    """Member login with email and password."""
    try:
        return await auth.login(data.email, data.password, PrincipalKind.CLIENT, data.audience)
    except AuthError as e:
        raise _http_error(e)


@router.post("/login/admin", response_model=TokenPair)
async def login_admin(data: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    """Back-office login with email and password."""
    try:
        return await auth.login(data.email, data.password, PrincipalKind.USER, data.audience)
    except AuthError as e:
        raise _http_error(e)


@router.post("/refresh", response_model=AccessToken)
async def refresh(data: RefreshRequest, auth: AuthService = Depends(get_auth_service)):
    """
    Use refresh token to get new access token.

    The refresh token is not rotated; keep using it until it expires.
    """
    try:
        return await auth.refresh(data.refresh_token, data.audience)
    except AuthError as e:
        raise _http_error(e)


@router.post("/logout")
async def logout(
    data: LogoutRequest | None = None,
    token: str | None = Depends(get_bearer_token),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Revoke the bearer token and, if given, the refresh token.

    Always succeeds; the client should discard its tokens regardless.
    """
    await auth.logout(token, data.refresh_token if data else None)
    return {"message": "Logged out successfully"}


# =============================================================================
# Protected Endpoints
# =============================================================================

@router.get("/me", response_model=PrincipalResponse)
async def get_current_principal(ctx: AuthContext = Depends(require_auth())):
    """Get the current authenticated principal."""
    return PrincipalResponse.from_principal(ctx.principal)


@router.get("/permissions")
async def get_permissions(ctx: AuthContext = Depends(require_auth())):
    """Role, defaults, overrides, and the effective set."""
    return describe_permissions(ctx.principal)


@router.post("/change-password")
async def change_password(
    data: ChangePasswordRequest,
    ctx: AuthContext = Depends(require_auth()),
    auth: AuthService = Depends(get_auth_service),
):
    try:
        await auth.change_password(ctx.principal_id, data.current_password, data.new_password)
    except AuthError as e:
        raise _http_error(e)
    return {"message": "Password changed successfully"}


# =============================================================================
# OAuth Endpoints
# =============================================================================

@router.get("/providers")
async def list_oauth_providers(oauth: OAuthManager = Depends(get_oauth_manager)):
    """
    List available OAuth providers.

    Only returns providers that are properly configured.
    """
    return {"providers": oauth.get_available_providers()}


@router.get("/{provider}/authorize")
async def oauth_authorize(provider: str, oauth: OAuthManager = Depends(get_oauth_manager)):
    """
    Get the OAuth authorization URL.

    Redirect the user to this URL to start the OAuth flow.
    """
    if provider not in oauth.get_available_providers():
        raise _http_error(ProviderUnavailableError(f"Provider '{provider}' is not configured"))

    try:
        return {"authorize_url": await oauth.get_authorize_url(provider)}
    except OAuthError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{provider}/callback", response_model=TokenPair)
async def oauth_callback(
    provider: str,
    data: OAuthCallbackRequest,
    oauth: OAuthManager = Depends(get_oauth_manager),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Complete the OAuth flow.

    Exchange the authorization code for the provider profile, link it to a
    member account, and return JWT tokens.
    """
    if provider not in oauth.get_available_providers():
        raise _http_error(ProviderUnavailableError(f"Provider '{provider}' is not configured"))

    # Validate state (CSRF protection); a missing state counts as forged
    expected_provider = await oauth.validate_state(data.state) if data.state else None
    if expected_provider != provider:
        logger.warning(f"{provider} OAuth callback with unknown or expired state")
        raise HTTPException(status_code=400, detail="Invalid state parameter")

    try:
        profile = await oauth.authenticate(provider, data.code)
    except OAuthError as e:
        logger.warning(f"{provider} OAuth callback failed: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    try:
        return await auth.login_with_identity(provider, profile, data.audience)
    except AuthError as e:
        raise _http_error(e)


# =============================================================================
# Resource Endpoints
# =============================================================================

@members_router.post("/{member_id}/check-in", response_model=PrincipalResponse)
async def check_in(
    member_id: str,
    ctx: AuthContext = Depends(require_owner("member_id")),
    auth: AuthService = Depends(get_auth_service),
):
    """Record a gym visit for a member."""
    member = await auth.store.find_by_id(member_id)
    if member is None or member.kind != PrincipalKind.CLIENT:
        raise HTTPException(status_code=404, detail="Member not found")

    member.check_in()
    member = await auth.store.update(member)
    logger.info(f"Check-in for {member.id} by {ctx.principal_id}: level {member.level}")
    return PrincipalResponse.from_principal(member)


@admin_router.get("/principals/{principal_id}", response_model=PrincipalResponse)
async def view_principal(
    principal_id: str,
    ctx: AuthContext = Depends(require(Permission.VIEW_CLIENTS, kind=PrincipalKind.USER)),
    auth: AuthService = Depends(get_auth_service),
):
    principal = await auth.store.find_by_id(principal_id)
    if principal is None:
        raise HTTPException(status_code=404, detail="Principal not found")
    return PrincipalResponse.from_principal(principal)
