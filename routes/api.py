"""
Central API route registration. All HTTP controllers are mounted here with /api prefix.
"""
import logging
from fastapi import FastAPI

from app.http.controllers import (
    sync,
    tiendanube,
    webhooks,
)

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
    app.include_router(sync.router, prefix="/api/sync", tags=["sync"])
    app.include_router(tiendanube.router, prefix="/api/tiendanube", tags=["tiendanube"])
    if not settings.TIENDANUBE_APP_SECRET:
        logger.warning("⚠️ TIENDANUBE_APP_SECRET is not set: every webhook delivery will be rejected (401)")
