"""Health check endpoint: public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from cellora.analysis.schema import SCHEMA_VERSION
from cellora.config import get_settings

router = APIRouter(tags=["system"])
logger = logging.getLogger("cellora.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness check. Returns 200 if the API process is up.

    Reports ``degraded`` when the pipeline or its extraction key is missing.
    """
    settings = get_settings()
    pipeline_ready = getattr(request.app.state, "pipeline", None) is not None
    key_configured = bool(settings.anthropic_api_key)
    if not key_configured:
        logger.warning("Health check: ANTHROPIC_API_KEY is not configured")

    return {
        "status": "healthy" if pipeline_ready and key_configured else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "schemaVersion": SCHEMA_VERSION,
        "pipeline": "ready" if pipeline_ready else "unavailable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
