"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel
from pydantic_settings import BaseSettings


# =============================================================================
# OAuth Provider Configuration
# =============================================================================


class ProviderConfig(BaseModel):
    """Credentials and callback for one external identity provider."""
    
    provider: str
    client_id: str = ""
    client_secret: str = ""
    callback_path: str = ""
    
    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class OAuthConfig(BaseModel):
    """
    Explicit OAuth configuration handed to the auth service at construction.
    
    Nothing here reads the environment; build it with Settings.oauth_config()
    or by hand in tests.
    """
    
    providers: dict[str, ProviderConfig] = {}
    
    def get(self, provider: str) -> ProviderConfig | None:
        return self.providers.get(provider)
    
    def is_available(self, provider: str) -> bool:
        config = self.providers.get(provider)
        return config is not None and config.is_configured
    
    def available_providers(self) -> list[str]:
        return sorted(p for p in self.providers if self.is_available(p))


# =============================================================================
# Settings
# =============================================================================


class Settings(BaseSettings):
    """Application settings loaded from environment."""
    
    # ==========================================================================
    # Environment
    # ==========================================================================
    
    environment: str = "development"
    debug: bool = True
    
    # ==========================================================================
    # API Server
    # ==========================================================================
    
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000,http://localhost:3001"
    frontend_url: str = "http://localhost:3001"
    
    # ==========================================================================
    # Credentials
    # ==========================================================================
    
    jwt_secret_key: str = "dev-jwt-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "elite-fitness-club"
    jwt_audiences: str = "web,mobile"
    jwt_access_token_expire_minutes: int = 24 * 60
    jwt_refresh_token_expire_days: int = 7
    jwt_expiring_soon_minutes: int = 30
    
    # ==========================================================================
    # Login Lockout
    # ==========================================================================
    
    lockout_max_attempts: int = 5
    lockout_duration_minutes: int = 30
    
    # Revocation registry and lockout table purge period
    housekeeping_interval_seconds: int = 3600
    
    # ==========================================================================
    # OAuth providers (optional)
    # ==========================================================================
    
    google_oauth_client_id: str = ""
    google_oauth_client_secret: str = ""
    google_oauth_callback_path: str = "/auth/google/callback"
    facebook_oauth_client_id: str = ""
    facebook_oauth_client_secret: str = ""
    facebook_oauth_callback_path: str = "/auth/facebook/callback"
    
    # Lifetime of the CSRF state handed out by /auth/{provider}/authorize
    oauth_state_ttl_seconds: int = 600
    
    # ==========================================================================
    # Optional Services
    # ==========================================================================
    
    sentry_dsn: str = ""
    
    # ==========================================================================
    # Helpers
    # ==========================================================================
    
    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
    
    @property
    def jwt_audiences_list(self) -> list[str]:
        return [a.strip() for a in self.jwt_audiences.split(",") if a.strip()]
    
    @property
    def is_production(self) -> bool:
        return self.environment == "production"
    
    def oauth_config(self) -> OAuthConfig:
        """Build the explicit OAuth configuration from the environment."""
        return OAuthConfig(providers={
            "google": ProviderConfig(
                provider="google",
                client_id=self.google_oauth_client_id,
                client_secret=self.google_oauth_client_secret,
                callback_path=self.google_oauth_callback_path,
            ),
            "facebook": ProviderConfig(
                provider="facebook",
                client_id=self.facebook_oauth_client_id,
                client_secret=self.facebook_oauth_client_secret,
                callback_path=self.facebook_oauth_callback_path,
            ),
        })
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
