"""
Auth service - the one entry point for every authentication flow.

Flows:
    login                 Start → LockCheck → Verify → Success | Fail
    login_with_identity   provider check → identity linking → tokens
    refresh               verify refresh token → revocation → re-fetch → access token
    logout                revoke whatever can be verified (never fails)
    verify_request        token → revocation → principal, or Unauthenticated
    authorize             principal + policy → ok, or Forbidden

Revocation and lockout lookups fail closed: if the backing store cannot
answer, the request is denied. Logout bookkeeping fails open.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from elitefit.auth.context import AuthContext
from elitefit.auth.errors import (
    AccountInactiveError,
    AccountLockedError,
    ForbiddenError,
    InvalidCredentialsError,
    PrincipalKindMismatchError,
    ProviderUnavailableError,
    TokenError,
    TokenExpiredError,
    TokenRevokedError,
    UnauthenticatedError,
)
from elitefit.auth.linking import IdentityLinker
from elitefit.auth.lockout import LockoutRecord, LockoutTracker
from elitefit.auth.passwords import dummy_verify, hash_password, verify_password
from elitefit.auth.policies import Policy
from elitefit.auth.revocation import InMemoryRevocationRegistry, RevocationRegistry
from elitefit.auth.tokens import AccessToken, TokenCodec, TokenPair
from elitefit.config import OAuthConfig, Settings, get_settings
from elitefit.core.models import (
    Audience,
    AuthProvider,
    ExternalProfile,
    Principal,
    PrincipalKind,
    TokenType,
)
from elitefit.core.utils import Clock, generate_id, utc_now
from elitefit.storage.base import PrincipalStore, StorageError

logger = logging.getLogger(__name__)


class AuthService:
    """Orchestrates codec, revocation, lockout, linking, and permissions."""

    def __init__(
        self,
        store: PrincipalStore,
        codec: TokenCodec,
        *,
        revocations: RevocationRegistry | None = None,
        lockout: LockoutTracker | None = None,
        linker: IdentityLinker | None = None,
        oauth: OAuthConfig | None = None,
        expiring_soon_minutes: int = 30,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.codec = codec
        # Registries define __len__, so an empty injected one is falsy
        if revocations is None:
            revocations = InMemoryRevocationRegistry(clock=clock)
        self.revocations = revocations
        self.lockout = lockout if lockout is not None else LockoutTracker(clock=clock)
        self.linker = linker if linker is not None else IdentityLinker(store, clock=clock)
        self.oauth = oauth if oauth is not None else OAuthConfig()
        self.expiring_soon_minutes = expiring_soon_minutes
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: PrincipalStore,
        settings: Settings | None = None,
        revocations: RevocationRegistry | None = None,
    ) -> AuthService:
        settings = settings or get_settings()
        return cls(
            store,
            TokenCodec.from_settings(settings),
            revocations=revocations,
            lockout=LockoutTracker.from_settings(settings),
            oauth=settings.oauth_config(),
            expiring_soon_minutes=settings.jwt_expiring_soon_minutes,
        )

    # =========================================================================
    # Password login
    # =========================================================================

    async def login(
        self,
        email: str,
        password: str,
        kind: PrincipalKind = PrincipalKind.CLIENT,
        audience: Audience | str = Audience.WEB,
    ) -> TokenPair:
        """
        Authenticate with email and password.

        Unknown email and wrong password are the same error. The lock is
        checked before the password so a locked account never reaches
        the hash comparison.
        """
        principal = await self.store.find_by_email(email, kind)
        if principal is None:
            dummy_verify(password)
            logger.warning(f"Failed {kind.value} login: unknown email")
            raise InvalidCredentialsError()

        if await self._is_locked(principal.id):
            logger.warning(f"Login refused for locked principal {principal.id}")
            raise AccountLockedError()

        if not verify_password(password, principal.password_hash):
            record = await self.lockout.record_failure(principal.id)
            await self._mirror_lockout(principal, record)
            logger.warning(
                f"Failed login for {principal.id} "
                f"({record.failed_attempts}/{self.lockout.max_attempts})"
            )
            raise InvalidCredentialsError()

        if not principal.is_active:
            logger.warning(f"Login refused for inactive principal {principal.id}")
            raise AccountInactiveError()

        await self.lockout.record_success(principal.id)
        principal.failed_attempts = 0
        principal.locked_until = None
        principal.last_login = self._clock()
        principal = await self.store.update(principal)

        logger.info(f"Login succeeded for {principal.id} ({principal.kind.value})")
        return self.codec.issue(principal, audience)

    async def register(
        self,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        audience: Audience | str = Audience.WEB,
    ) -> tuple[Principal, TokenPair]:
        """Create a local member account and sign it in."""
        principal = Principal(
            id=generate_id("cli"),
            kind=PrincipalKind.CLIENT,
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            auth_provider=AuthProvider.LOCAL,
            last_login=self._clock(),
        )
        principal = await self.store.create(principal)
        logger.info(f"Registered member {principal.id}")
        return principal, self.codec.issue(principal, audience)

    async def change_password(
        self,
        principal_id: str,
        current_password: str,
        new_password: str,
    ) -> Principal:
        """
        Replace a principal's password after checking the current one.

        Outstanding tokens stay valid until they expire.
        """
        principal = await self.store.find_by_id(principal_id)
        if principal is None or not principal.is_active:
            raise AccountInactiveError()
        if not verify_password(current_password, principal.password_hash):
            logger.warning(f"Password change refused for {principal_id}: wrong current password")
            raise InvalidCredentialsError("Current password is incorrect")

        principal.password_hash = hash_password(new_password)
        principal = await self.store.update(principal)
        logger.info(f"Password changed for {principal_id}")
        return principal

    # =========================================================================
    # External identity login
    # =========================================================================

    def available_providers(self) -> list[str]:
        return self.oauth.available_providers()

    async def login_with_identity(
        self,
        provider: str,
        profile: ExternalProfile,
        audience: Audience | str = Audience.WEB,
    ) -> TokenPair:
        """Sign in (or sign up) with a profile from an external provider."""
        if not self.oauth.is_available(provider):
            raise ProviderUnavailableError(f"Provider '{provider}' is not configured")

        principal = await self.linker.resolve(provider, profile)
        if not principal.is_active:
            logger.warning(f"{provider} login refused for inactive principal {principal.id}")
            raise AccountInactiveError()

        logger.info(f"{provider} login succeeded for {principal.id}")
        return self.codec.issue(principal, audience)

    # =========================================================================
    # Refresh / logout
    # =========================================================================

    async def refresh(
        self,
        refresh_token: str,
        audience: Audience | str = Audience.WEB,
    ) -> AccessToken:
        """
        Mint a new access token from a refresh token.

        The refresh token itself is reused, not rotated. The principal is
        re-read so deactivation since issue takes effect immediately.
        """
        payload = self.codec.verify(refresh_token, TokenType.REFRESH)

        if await self._is_revoked(payload.jti):
            raise TokenRevokedError()

        principal = await self.store.find_by_id(payload.sub)
        if principal is None or not principal.is_active or principal.kind != payload.kind:
            raise AccountInactiveError()

        logger.info(f"Access token refreshed for {principal.id}")
        return self.codec.issue_access(principal, audience)

    async def logout(self, access_token: str | None, refresh_token: str | None = None) -> None:
        """
        Revoke the given tokens until they expire.

        Always completes: the client discards its tokens either way, so
        bookkeeping problems are logged rather than raised.
        """
        for token, token_type in ((access_token, TokenType.ACCESS), (refresh_token, TokenType.REFRESH)):
            if not token:
                continue
            try:
                payload = self.codec.verify(token, token_type)
            except TokenExpiredError:
                continue  # Already unusable
            except TokenError as e:
                logger.info(f"Logout skipped unverifiable {token_type.value} token: {e.code}")
                continue

            try:
                await self.revocations.revoke(payload.jti, payload.exp)
            except Exception:
                logger.warning(f"Could not revoke {token_type.value} token {payload.jti}", exc_info=True)

    # =========================================================================
    # Protected requests
    # =========================================================================

    async def verify_request(self, token: str | None) -> Principal:
        """
        Resolve a bearer token to a live principal.

        Every failure is Unauthenticated; the underlying cause is chained.
        """
        if not token:
            raise UnauthenticatedError()

        try:
            payload = self.codec.verify(token, TokenType.ACCESS)
        except TokenError as e:
            raise UnauthenticatedError(e.message) from e

        if await self._is_revoked(payload.jti):
            raise UnauthenticatedError("Token has been revoked") from TokenRevokedError()

        principal = await self.store.find_by_id(payload.sub)
        if principal is None or not principal.is_active or principal.kind != payload.kind:
            raise UnauthenticatedError("Account not found or inactive")

        return principal

    def authorize(self, subject: Principal | AuthContext, policy: Policy) -> AuthContext:
        """Check a policy; raise ForbiddenError if it does not pass."""
        ctx = subject if isinstance(subject, AuthContext) else AuthContext.from_principal(subject)
        allowed, error = policy.check(ctx)
        if not allowed:
            logger.warning(f"Denied {ctx.principal_id} ({ctx.effective_role.value}): {policy.name}")
            if policy.kind_mismatch(ctx):
                raise PrincipalKindMismatchError(error)
            raise ForbiddenError(error)
        return ctx

    # =========================================================================
    # Housekeeping
    # =========================================================================

    async def housekeeping(self, now: datetime | None = None) -> dict[str, int]:
        """Purge expired revocations and stale lockout records."""
        now = now or self._clock()
        return {
            "revocations": await self.revocations.purge_expired(now),
            "lockouts": await self.lockout.purge_stale(now),
        }

    def token_info(self, token: str) -> dict[str, Any] | None:
        """Unverified token details for display."""
        payload = self.codec.peek(token)
        if payload is None:
            return None
        return {
            "issued_at": payload.iat,
            "expires_at": payload.exp,
            "expiring_soon": self.codec.is_expiring_soon(
                token, self.expiring_soon_minutes, now=self._clock()
            ),
        }

    # =========================================================================
    # Internals
    # =========================================================================

    async def _is_locked(self, principal_id: str) -> bool:
        try:
            return await self.lockout.is_locked(principal_id)
        except Exception:
            # Fail closed: cannot confirm the account is unlocked
            logger.exception(f"Lockout lookup failed for {principal_id}")
            return True

    async def _is_revoked(self, jti: str) -> bool:
        try:
            return await self.revocations.is_revoked(jti)
        except Exception:
            # Fail closed: cannot confirm the token is still good
            logger.exception(f"Revocation lookup failed for token {jti}")
            return True

    async def _mirror_lockout(self, principal: Principal, record: LockoutRecord) -> None:
        """Copy the tracker's counters onto the stored principal."""
        principal.failed_attempts = record.failed_attempts
        principal.locked_until = record.locked_until
        try:
            await self.store.update(principal)
        except StorageError:
            logger.warning(f"Could not persist lockout state for {principal.id}", exc_info=True)
