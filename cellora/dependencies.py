"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from cellora.analysis.pipeline import AnalysisPipeline
from cellora.config import Settings, get_settings


async def get_pipeline(request: Request) -> AnalysisPipeline:
    """Return the pipeline built at startup (see ``main.lifespan``)."""
    pipeline: AnalysisPipeline | None = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Analysis pipeline is not ready")
    return pipeline


# Annotated shortcuts for route signatures
Pipeline = Annotated[AnalysisPipeline, Depends(get_pipeline)]
AppSettings = Annotated[Settings, Depends(get_settings)]
