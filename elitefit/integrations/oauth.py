# =============================================================================
# OAuth Integration (Google, Facebook)
# =============================================================================
#
# Setup (Google):
#   1. Go to https://console.cloud.google.com/apis/credentials
#   2. Create OAuth 2.0 Client ID (Web application)
#   3. Add authorized redirect URI: https://yourdomain.com/auth/google/callback
#   4. Set env vars:
#      - GOOGLE_OAUTH_CLIENT_ID=...
#      - GOOGLE_OAUTH_CLIENT_SECRET=...
#
# Setup (Facebook):
#   1. Go to https://developers.facebook.com/apps
#   2. Create app, add Facebook Login product
#   3. Set env vars:
#      - FACEBOOK_OAUTH_CLIENT_ID=...
#      - FACEBOOK_OAUTH_CLIENT_SECRET=...
#
# These clients only fetch the provider's profile. Turning a profile into a
# local account is the IdentityLinker's job.
#
# =============================================================================

import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlencode

import httpx

from elitefit.config import OAuthConfig, ProviderConfig
from elitefit.core.models import ExternalProfile
from elitefit.core.utils import generate_id
from elitefit.storage import CacheStorage, InMemoryCacheStorage

logger = logging.getLogger(__name__)


class OAuthError(Exception):
    """OAuth flow error."""
    pass


# =============================================================================
# Base Provider
# =============================================================================

class OAuthProvider(ABC):
    """Authorization-code flow shared by the concrete providers."""

    name = ""
    AUTHORIZE_URL = ""
    TOKEN_URL = ""
    USERINFO_URL = ""
    SCOPE = ""

    def __init__(
        self,
        config: ProviderConfig,
        base_url: str = "http://localhost:3001",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    @property
    def redirect_uri(self) -> str:
        """Get the callback URL."""
        return f"{self.base_url}{self.config.callback_path}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=10.0)

    def _authorize_params(self) -> dict[str, str]:
        return {
            "client_id": self.config.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.SCOPE,
        }

    def get_authorize_url(self, state: str | None = None) -> str:
        """
        Get URL to redirect user to for sign-in.

        Args:
            state: Optional state parameter for CSRF protection
        """
        if not self.is_configured:
            raise OAuthError(f"{self.name} OAuth not configured")

        params = self._authorize_params()
        if state:
            params["state"] = state

        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    @abstractmethod
    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange authorization code for provider tokens."""
        pass

    @abstractmethod
    async def get_profile(self, access_token: str) -> ExternalProfile:
        """Fetch the signed-in user's profile."""
        pass

    async def authenticate(self, code: str) -> ExternalProfile:
        """Complete OAuth flow: exchange code and get the profile."""
        tokens = await self.exchange_code(code)
        if "access_token" not in tokens:
            raise OAuthError(f"{self.name} token response had no access token")
        return await self.get_profile(tokens["access_token"])


# =============================================================================
# Google OAuth
# =============================================================================

class GoogleOAuth(OAuthProvider):
    """Google OAuth 2.0 implementation."""

    name = "google"
    AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
    SCOPE = "openid email profile"

    def _authorize_params(self) -> dict[str, str]:
        params = super()._authorize_params()
        params["access_type"] = "offline"
        params["prompt"] = "select_account"
        return params

    async def exchange_code(self, code: str) -> dict[str, Any]:
        if not self.is_configured:
            raise OAuthError("Google OAuth not configured")

        async with self._client() as client:
            response = await client.post(
                self.TOKEN_URL,
                data={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                },
            )

            if response.status_code != 200:
                logger.error(f"Google token exchange failed: {response.text}")
                raise OAuthError(f"Token exchange failed: {response.status_code}")

            return response.json()

    async def get_profile(self, access_token: str) -> ExternalProfile:
        async with self._client() as client:
            response = await client.get(
                self.USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )

            if response.status_code != 200:
                logger.error(f"Google userinfo failed: {response.text}")
                raise OAuthError(f"Failed to get user info: {response.status_code}")

            data = response.json()

            return ExternalProfile(
                id=str(data["id"]),
                email=data.get("email"),
                email_verified=data.get("verified_email", False),
                first_name=data.get("given_name", ""),
                last_name=data.get("family_name", ""),
                picture_url=data.get("picture"),
            )


# =============================================================================
# Facebook OAuth
# =============================================================================

class FacebookOAuth(OAuthProvider):
    """Facebook OAuth 2.0 implementation."""

    name = "facebook"
    AUTHORIZE_URL = "https://www.facebook.com/v18.0/dialog/oauth"
    TOKEN_URL = "https://graph.facebook.com/v18.0/oauth/access_token"
    USERINFO_URL = "https://graph.facebook.com/v18.0/me"
    SCOPE = "email,public_profile"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        if not self.is_configured:
            raise OAuthError("Facebook OAuth not configured")

        async with self._client() as client:
            response = await client.get(
                self.TOKEN_URL,
                params={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                },
            )

            if response.status_code != 200:
                logger.error(f"Facebook token exchange failed: {response.text}")
                raise OAuthError(f"Token exchange failed: {response.status_code}")

            return response.json()

    async def get_profile(self, access_token: str) -> ExternalProfile:
        async with self._client() as client:
            response = await client.get(
                self.USERINFO_URL,
                params={
                    "fields": "id,email,first_name,last_name,picture.type(large)",
                    "access_token": access_token,
                },
            )

            if response.status_code != 200:
                logger.error(f"Facebook userinfo failed: {response.text}")
                raise OAuthError(f"Failed to get user info: {response.status_code}")

            data = response.json()

            return ExternalProfile(
                id=str(data["id"]),
                email=data.get("email"),
                email_verified=True,  # Facebook only returns confirmed emails
                first_name=data.get("first_name", ""),
                last_name=data.get("last_name", ""),
                picture_url=data.get("picture", {}).get("data", {}).get("url"),
            )


# =============================================================================
# OAuth Manager
# =============================================================================

PROVIDER_CLASSES: dict[str, type[OAuthProvider]] = {
    "google": GoogleOAuth,
    "facebook": FacebookOAuth,
}


class OAuthManager:
    """Manage all OAuth providers."""

    STATE_PREFIX = "oauth_state:"

    def __init__(
        self,
        config: OAuthConfig,
        base_url: str = "http://localhost:3001",
        transport: httpx.AsyncBaseTransport | None = None,
        states: CacheStorage | None = None,
        state_ttl_seconds: int = 600,
    ):
        self.config = config
        self.providers: dict[str, OAuthProvider] = {
            name: PROVIDER_CLASSES[name](provider_config, base_url, transport)
            for name, provider_config in config.providers.items()
            if name in PROVIDER_CLASSES
        }

        # State tokens for CSRF protection, expired by the cache
        self.states = states if states is not None else InMemoryCacheStorage()
        self.state_ttl_seconds = state_ttl_seconds

    def get_available_providers(self) -> list[str]:
        """Get list of configured OAuth providers."""
        return [p for p in self.config.available_providers() if p in self.providers]

    async def create_state(self, provider: str) -> str:
        """Create a state token for CSRF protection."""
        state = generate_id("oauth")
        await self.states.set(self.STATE_PREFIX + state, provider, ttl=self.state_ttl_seconds)
        return state

    async def validate_state(self, state: str) -> str | None:
        """Validate and consume a state token. Returns provider if valid."""
        key = self.STATE_PREFIX + state
        provider = await self.states.get(key)
        if provider is None:
            return None
        # Whoever deletes the key owns the state
        if not await self.states.delete(key):
            return None
        return provider

    async def purge_expired_states(self) -> int:
        return await self.states.purge_expired()

    def _provider(self, provider: str) -> OAuthProvider:
        if provider not in self.providers:
            raise OAuthError(f"Unknown provider: {provider}")
        return self.providers[provider]

    async def get_authorize_url(self, provider: str) -> str:
        """Get authorization URL for a provider."""
        client = self._provider(provider)
        return client.get_authorize_url(await self.create_state(provider))

    async def authenticate(self, provider: str, code: str) -> ExternalProfile:
        """Complete authentication for a provider."""
        return await self._provider(provider).authenticate(code)
