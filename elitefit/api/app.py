"""
FastAPI application for the Elite Fitness auth core.

Run locally:
    uvicorn elitefit.api.app:app --reload
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from elitefit.auth.routes import admin_router, members_router, router as auth_router
from elitefit.auth.service import AuthService
from elitefit.config import Settings, get_settings
from elitefit.integrations.oauth import OAuthManager
from elitefit.integrations.sentry import init_sentry
from elitefit.storage import InMemoryPrincipalStore, PrincipalStore

logger = logging.getLogger(__name__)


# =============================================================================
# Housekeeping
# =============================================================================


async def run_housekeeping(
    auth: AuthService,
    interval_seconds: int,
    oauth: OAuthManager | None = None,
) -> None:
    """Purge expired revocations, stale lockouts and OAuth states until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            purged = await auth.housekeeping()
            if oauth is not None:
                purged["oauth_states"] = await oauth.purge_expired_states()
        except Exception:
            logger.exception("Auth housekeeping failed")
            continue
        if any(purged.values()):
            logger.info(f"Auth housekeeping purged {purged}")


# =============================================================================
# App Setup
# =============================================================================


def create_app(
    settings: Settings | None = None,
    store: PrincipalStore | None = None,
    oauth_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the API.

    Tests pass their own settings, a pre-seeded store, and an httpx mock
    transport for the OAuth providers.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize and cleanup app resources."""
        if init_sentry(settings):
            logger.info("Sentry error tracking enabled")

        app.state.store = store if store is not None else InMemoryPrincipalStore()
        app.state.auth = AuthService.from_settings(app.state.store, settings)
        app.state.oauth = OAuthManager(
            settings.oauth_config(),
            base_url=settings.frontend_url,
            transport=oauth_transport,
            state_ttl_seconds=settings.oauth_state_ttl_seconds,
        )

        housekeeping = asyncio.create_task(
            run_housekeeping(
                app.state.auth,
                settings.housekeeping_interval_seconds,
                app.state.oauth,
            )
        )
        logger.info(f"Elite Fitness auth API starting in {settings.environment} mode")

        yield

        housekeeping.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await housekeeping
        logger.info("Elite Fitness auth API shutting down")

    app = FastAPI(
        title="Elite Fitness Auth API",
        description="Authentication and authorization for the Elite Fitness Club backend",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    expose_headers=["X-Token-Expiring", "X-Token-Refresh-Suggested"],
    )

    # Include routers
    app.include_router(auth_router)
    app.include_router(members_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "elitefit-auth"}

    return app


app = create_app()


def main() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
