"""
External identity linking.

Maps a profile asserted by Google/Facebook onto a local member account:

1. Already bound to this (provider, external id)  → that account
2. A member with the same email exists            → link and return it
3. Otherwise                                      → create a new member

Steps 2 and 3 race when two logins for the same person arrive together.
The store rejects the loser with DuplicatePrincipalError and the whole
resolution runs once more, which then finds the winner's record.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt

from elitefit.auth.errors import IdentityProfileIncompleteError, ProviderUnavailableError
from elitefit.core.models import AuthProvider, ExternalProfile, Principal, PrincipalKind
from elitefit.core.utils import Clock, generate_id, utc_now
from elitefit.storage.base import DuplicatePrincipalError, PrincipalStore

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

SUPPORTED_PROVIDERS = {AuthProvider.GOOGLE.value, AuthProvider.FACEBOOK.value}


def usable_email(profile: ExternalProfile) -> str | None:
    """The profile's email, normalised, if it can identify an account."""
    email = (profile.email or "").strip().lower()
    if not email or not EMAIL_PATTERN.match(email) or not profile.email_verified:
        return None
    return email


class IdentityLinker:
    """Resolves external profiles to member principals."""

    def __init__(self, store: PrincipalStore, clock: Clock = utc_now):
        self.store = store
        self._clock = clock

    async def resolve(self, provider: str, profile: ExternalProfile) -> Principal:
        """
        Find or create the member for an external profile.

        Raises:
            IdentityProfileIncompleteError: no usable (verified) email
            ProviderUnavailableError: provider is not one we link
        """
        if provider not in SUPPORTED_PROVIDERS:
            raise ProviderUnavailableError(f"Unknown provider: {provider}")

        email = usable_email(profile)
        if email is None:
            logger.warning(f"{provider} profile {profile.id} has no usable email")
            raise IdentityProfileIncompleteError()

        return await self._resolve(provider, profile, email)

    @retry(
        retry=retry_if_exception_type(DuplicatePrincipalError),
        stop=stop_after_attempt(2),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _resolve(self, provider: str, profile: ExternalProfile, email: str) -> Principal:
        now = self._clock()

        principal = await self.store.find_by_external_id(provider, profile.id)
        if principal:
            principal.last_login = now
            return await self.store.update(principal)

        principal = await self.store.find_by_email(email, PrincipalKind.CLIENT)
        if principal:
            return await self._link(principal, provider, profile, now)

        return await self._create(provider, profile, email, now)

    async def _link(
        self,
        principal: Principal,
        provider: str,
        profile: ExternalProfile,
        now: datetime,
    ) -> Principal:
        previous = principal.auth_provider
        principal.bind_identity(provider, profile.id)
        principal.email_verified = True
        principal.last_login = now
        if previous in (AuthProvider.LOCAL, AuthProvider(provider)):
            principal.auth_provider = AuthProvider(provider)
        else:
            principal.auth_provider = AuthProvider.MULTIPLE

        linked = await self.store.update(principal)
        logger.info(f"Linked {provider} identity to existing member {linked.id}")
        return linked

    async def _create(
        self,
        provider: str,
        profile: ExternalProfile,
        email: str,
        now: datetime,
    ) -> Principal:
        principal = Principal(
            id=generate_id("cli"),
            kind=PrincipalKind.CLIENT,
            email=email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            auth_provider=AuthProvider(provider),
            email_verified=True,
            last_login=now,
            points=0,
            level=1,
        )
        principal.bind_identity(provider, profile.id)

        created = await self.store.create(principal)
        logger.info(f"Created member {created.id} from {provider} identity")
        return created
