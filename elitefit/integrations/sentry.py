# =============================================================================
# Sentry Error Tracking Integration
# =============================================================================
#
# Setup:
#   1. Create account at sentry.io
#   2. Create a Python project
#   3. Copy DSN to .env: SENTRY_DSN=https://...@sentry.io/...
#
# Usage:
#   init_sentry() runs at app startup (in elitefit/api/app.py)
#
# Auth traffic carries passwords and bearer tokens; every event is scrubbed
# of both before it leaves the process.
#
# =============================================================================

import logging

from elitefit.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Sentry SDK is optional (the "sentry" extra) - disabled if not installed
try:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration
    SENTRY_AVAILABLE = True
except ImportError:
    SENTRY_AVAILABLE = False
    sentry_sdk = None

SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key"}
SENSITIVE_FIELDS = {
    "password",
    "current_password",
    "new_password",
    "access_token",
    "refresh_token",
    "code",
}
FILTERED = "[Filtered]"


def init_sentry(settings: Settings | None = None) -> bool:
    """
    Initialize Sentry error tracking.

    Returns True if initialized, False if skipped.
    """
    if not SENTRY_AVAILABLE:
        logger.info("Sentry SDK not installed - error tracking disabled")
        return False

    settings = settings or get_settings()

    if not settings.sentry_dsn:
        logger.info("SENTRY_DSN not set - error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(transaction_style="endpoint"),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR,
            ),
        ],
        send_default_pii=False,
        before_send=filter_event,
        before_send_transaction=_filter_transactions,
    )

    logger.info(f"Sentry initialized for {settings.environment}")
    return True


def filter_event(event: dict, hint: dict) -> dict | None:
    """Drop expected auth failures and scrub credentials."""
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]

        # Don't report auth failures, lockouts, 404s, validation errors
        from fastapi import HTTPException
        if isinstance(exc_value, HTTPException):
            if exc_value.status_code in (400, 401, 403, 404, 422, 423):
                return None

    request = event.get("request")
    if request:
        headers = request.get("headers") or {}
        for key in list(headers.keys()):
            if key.lower() in SENSITIVE_HEADERS:
                headers[key] = FILTERED

        data = request.get("data")
        if isinstance(data, dict):
            for key in list(data.keys()):
                if key.lower() in SENSITIVE_FIELDS:
                    data[key] = FILTERED

    return event


def _filter_transactions(event: dict, hint: dict) -> dict | None:
    """Filter out noisy transactions."""
    if event.get("transaction", "") in ("/health", "/healthz", "/ready"):
        return None
    return event
