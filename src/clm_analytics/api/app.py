"""FastAPI application factory for the read-only analytics API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from clm_analytics.api import routes


def create_api_app(lifespan: Any = None) -> FastAPI:
    """Create the read-only API application.

    Route handlers read ``store``, ``alert_feed`` and (optionally)
    ``scheduler`` from ``app.state``; main.py's lifespan populates them.

    Args:
        lifespan: Optional async context manager for application lifespan events.
    """
    app = FastAPI(
        title="CLM Pool Analytics",
        lifespan=lifespan,
    )
    app.include_router(routes.router, prefix="/api")
    return app
