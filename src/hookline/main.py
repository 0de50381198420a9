"""Hookline - FastAPI application.

Management API for outgoing webhooks: configuration, manual dispatch,
delivery stats and circuit breaker operations.
"""

from typing import Optional

import httpx
from fastapi import FastAPI

from . import __version__
from .core.logging_config import setup_logging
from .core.observability import ObservabilityHook
from .core.settings import AppSettings, load_settings
from .webhooks.container import build_container
from .webhooks.router import router as webhooks_router
from .webhooks.store import WebhookStore


def create_app(
    settings: Optional[AppSettings] = None,
    store: Optional[WebhookStore] = None,
    hook: Optional[ObservabilityHook] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the application with its own webhook container."""
    settings = settings or load_settings()

    app = FastAPI(
        title="Hookline",
        description="Outgoing webhook delivery with signing, retries and circuit breaking.",
        version=__version__,
    )
    app.state.webhooks = build_container(
        settings=settings,
        store=store,
        hook=hook,
        transport=transport,
    )
    app.include_router(webhooks_router)

    @app.on_event("startup")
    async def startup_event():
        """Initialize logging on startup."""
        setup_logging(settings.log_level)

    @app.get("/")
    def root() -> dict[str, str]:
        """Root endpoint returning service info."""
        return {
            "status": "ok",
            "message": "Welcome to Hookline",
            "version": __version__,
            "docs": "/docs",
        }

    @app.get("/health")
    def health() -> dict[str, str]:
        """Health check endpoint for monitoring and load balancers."""
        return {"status": "healthy"}

    return app


app = create_app()
