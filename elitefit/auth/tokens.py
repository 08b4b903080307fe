# =============================================================================
# JWT Credential Codec
# =============================================================================
#
# Issues, verifies, and inspects the bearer credentials handed to clients:
#   - Access tokens (hours): principal id, kind, role, permission overrides
#   - Refresh tokens (days): principal id, kind, token type only
#
# Every token carries a fresh jti so it can be revoked individually.
# Expired, malformed, and tampered tokens raise distinct errors because
# refresh logic treats "expired" differently from "garbage".
#
# =============================================================================

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

import jwt
from pydantic import BaseModel, Field, ValidationError

from elitefit.auth.errors import (
    SigningKeyError,
    TokenExpiredError,
    TokenMalformedError,
    TokenSignatureError,
)
from elitefit.config import Settings, get_settings
from elitefit.core.models import Audience, Principal, PrincipalKind, Role, TokenType
from elitefit.core.utils import Clock, utc_now

logger = logging.getLogger(__name__)

HMAC_ALGORITHMS = {"HS256", "HS384", "HS512"}
DEV_SECRET = "dev-jwt-secret-change-in-production"


# =============================================================================
# Models
# =============================================================================

class CredentialPayload(BaseModel):
    """Decoded token claims."""
    sub: str  # principal id
    kind: PrincipalKind
    type: TokenType
    jti: str  # unique token ID (for revocation)
    iat: datetime
    exp: datetime
    iss: str | None = None
    aud: str | list[str] | None = None
    role: Role | None = None
    permissions: dict[str, bool] = Field(default_factory=dict)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> CredentialPayload:
        return cls(
            sub=claims["sub"],
            kind=claims["kind"],
            type=claims["type"],
            jti=claims["jti"],
            iat=claims["iat"],
            exp=claims["exp"],
            iss=claims.get("iss"),
            aud=claims.get("aud"),
            role=claims.get("role"),
            permissions=claims.get("permissions") or {},
        )


class TokenPair(BaseModel):
    """Access and refresh token pair."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires
    refresh_expires_in: int


class AccessToken(BaseModel):
    """A lone access token, as returned by refresh."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


# =============================================================================
# Codec
# =============================================================================

class TokenCodec:
    """Signs and verifies access and refresh tokens with a shared secret."""

    def __init__(
        self,
        secret_key: str,
        *,
        algorithm: str = "HS256",
        issuer: str = "elite-fitness-club",
        audiences: Iterable[str] = (Audience.WEB.value, Audience.MOBILE.value),
        access_ttl: timedelta = timedelta(hours=24),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Clock = utc_now,
    ):
        if not secret_key:
            raise SigningKeyError("JWT secret key is empty")
        if algorithm not in HMAC_ALGORITHMS:
            raise SigningKeyError(f"Unsupported signing algorithm: {algorithm}")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audiences = list(audiences)
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings | None = None, clock: Clock = utc_now) -> TokenCodec:
        settings = settings or get_settings()
        if settings.is_production and settings.jwt_secret_key == DEV_SECRET:
            raise SigningKeyError("JWT_SECRET_KEY must be set in production")
        return cls(
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audiences=settings.jwt_audiences_list,
            access_ttl=timedelta(minutes=settings.jwt_access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.jwt_refresh_token_expire_days),
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Issuing
    # -------------------------------------------------------------------------

    def issue(self, principal: Principal, audience: Audience | str = Audience.WEB) -> TokenPair:
        """Create both access and refresh tokens."""
        access = self.issue_access(principal, audience)
        return TokenPair(
            access_token=access.access_token,
            refresh_token=self._encode_refresh(principal),
            expires_in=access.expires_in,
            refresh_expires_in=int(self.refresh_ttl.total_seconds()),
        )

    def issue_access(self, principal: Principal, audience: Audience | str = Audience.WEB) -> AccessToken:
        """Create a JWT access token."""
        audience = Audience(audience).value
        if audience not in self.audiences:
            raise ValueError(f"Audience not accepted by this deployment: {audience}")

        now = self._clock()
        payload = {
            "sub": principal.id,
            "kind": principal.kind.value,
            "role": principal.role.value if principal.role else None,
            "permissions": dict(principal.permissions),
            "type": TokenType.ACCESS.value,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + self.access_ttl,
            "iss": self.issuer,
            "aud": audience,
        }
        logger.debug(f"Access token issued for {principal.id} ({principal.kind.value})")
        return AccessToken(
            access_token=self._encode(payload),
            expires_in=int(self.access_ttl.total_seconds()),
        )

    def _encode_refresh(self, principal: Principal) -> str:
        """Create a JWT refresh token (longer-lived)."""
        now = self._clock()
        payload = {
            "sub": principal.id,
            "kind": principal.kind.value,
            "type": TokenType.REFRESH.value,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + self.refresh_ttl,
            "iss": self.issuer,
        }
        return self._encode(payload)

    def _encode(self, payload: dict[str, Any]) -> str:
        try:
            return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        except (jwt.InvalidKeyError, NotImplementedError) as e:
            raise SigningKeyError(f"Cannot sign token: {e}") from e

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def verify(self, token: str, expected_type: TokenType = TokenType.ACCESS) -> CredentialPayload:
        """
        Decode and validate a JWT token.

        Args:
            token: The JWT string
            expected_type: TokenType.ACCESS or TokenType.REFRESH

        Returns:
            CredentialPayload with validated claims

        Raises:
            TokenExpiredError: Token has expired
            TokenSignatureError: Signature does not match
            TokenMalformedError: Anything else wrong with the token
        """
        if not token or not isinstance(token, str):
            raise TokenMalformedError("Token is empty")

        options: dict[str, Any] = {"require": ["exp", "iat", "sub", "jti"]}
        audience = None
        if expected_type == TokenType.ACCESS:
            audience = self.audiences
        else:
            # Refresh tokens are audience-less
            options["verify_aud"] = False

        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=audience,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.InvalidSignatureError:
            raise TokenSignatureError()
        except jwt.InvalidTokenError as e:
            raise TokenMalformedError(f"Invalid token: {e}")

        if claims.get("type") != expected_type.value:
            raise TokenMalformedError(f"Expected {expected_type.value} token, got {claims.get('type')}")

        try:
            return CredentialPayload.from_claims(claims)
        except (KeyError, ValidationError) as e:
            raise TokenMalformedError(f"Invalid token claims: {e}")

    def peek(self, token: str) -> CredentialPayload | None:
        """
        Decode WITHOUT checking the signature.

        For UX hints only (e.g. "session expiring soon"). Never use the
        result to make an authorization decision.
        """
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
            return CredentialPayload.from_claims(claims)
        except (jwt.InvalidTokenError, KeyError, ValidationError):
            return None

    def is_expiring_soon(
        self,
        token: str,
        threshold_minutes: int = 30,
        now: datetime | None = None,
    ) -> bool:
        """True if the token expires within the threshold. Undecodable tokens count as expiring."""
        payload = self.peek(token)
        if payload is None:
            return True
        remaining = payload.exp - (now or self._clock())
        return remaining <= timedelta(minutes=threshold_minutes)
