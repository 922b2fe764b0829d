"""Cellora API: FastAPI application entry point.

Run locally:
    uvicorn cellora.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cellora.analysis.cache import InMemoryExtractionCache
from cellora.analysis.catalog import get_treatment_catalog
from cellora.analysis.inference import AnthropicVisionClient
from cellora.analysis.pipeline import AnalysisPipeline
from cellora.config import get_settings
from cellora.routers import analysis, health

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("cellora")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Cellora API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    if getattr(app.state, "pipeline", None) is None:
        client = AnthropicVisionClient(
            settings.anthropic_api_key,
            model=settings.extraction_model,
            max_tokens=settings.extraction_max_tokens,
        )
        app.state.pipeline = AnalysisPipeline(
            client,
            cache=InMemoryExtractionCache(),
            catalog=get_treatment_catalog(),
            settings=settings,
        )
    yield
    logger.info("Cellora API shut down")


# ---------- App factory ----------

def create_app(pipeline: AnalysisPipeline | None = None) -> FastAPI:
    """Build the app.  Pass ``pipeline`` to inject a preconfigured one."""
    settings = get_settings()

    app = FastAPI(
        title="Cellora API",
        description=(
            "Skin-imaging report analysis: multi-page scans in, one normalised "
            "clinical profile with scores, concerns and a treatment plan out."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(analysis.router, prefix=v1_prefix)

    return app


app = create_app()
