"""Skin report analysis endpoints.

Endpoints:
    POST /analysis/upload  : multipart upload (``file``, optional ``actual_age``)
    POST /analysis         : JSON body with base64 content or a local file path
    GET  /analysis/schema  : the versioned per-page extraction schema
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from cellora.analysis.errors import AnalysisError, ErrorKind, InvalidFormatError
from cellora.analysis.intake import (
    load_document,
    load_document_from_base64,
    load_document_from_path,
)
from cellora.analysis.schema import SCHEMA_VERSION, extraction_json_schema
from cellora.dependencies import AppSettings, Pipeline
from cellora.models.analysis import AnalysisResponse, AnalyzeRequest, SchemaResponse

logger = logging.getLogger("cellora.routers.analysis")

router = APIRouter(prefix="/analysis", tags=["analysis"])

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_FORMAT: 400,
    ErrorKind.TOO_LARGE: 413,
    ErrorKind.INSUFFICIENT_DATA: 422,
    ErrorKind.AGGREGATION_INVARIANT_VIOLATION: 500,
}


def _http_error(exc: AnalysisError) -> HTTPException:
    status = _STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error("Analysis failed: %s: %s", exc.kind.value, exc.message)
    else:
        logger.info("Analysis rejected: %s: %s", exc.kind.value, exc.message)
    return HTTPException(status_code=status, detail=exc.to_dict())


# ---------------------------------------------------------------------------
# POST /analysis/upload
# ---------------------------------------------------------------------------


@router.post("/upload", response_model=AnalysisResponse)
async def analyze_upload(
    pipeline: Pipeline,
    settings: AppSettings,
    file: UploadFile = File(...),
    actual_age: int | None = Form(default=None, ge=1, le=120),
) -> Any:
    """Upload a skin-imaging report (PDF or image) and analyse it.

    - Validates type (magic bytes + extension) and size
    - Renders and classifies every page
    - Extracts pages concurrently; failed pages are listed in ``skippedPages``
    - Returns the consolidated report
    """
    file_data = await file.read()
    filename = file.filename or "upload.pdf"

    try:
        handle = load_document(
            file_data,
            filename,
            max_bytes=settings.max_upload_size_bytes,
            allowed_types=settings.allowed_upload_types,
        )
        report = await pipeline.run(handle, actual_age=actual_age)
    except AnalysisError as exc:
        raise _http_error(exc) from exc

    return AnalysisResponse(analysis=report.to_dict())


# ---------------------------------------------------------------------------
# POST /analysis
# ---------------------------------------------------------------------------


@router.post("", response_model=AnalysisResponse)
async def analyze_json(body: AnalyzeRequest, pipeline: Pipeline, settings: AppSettings) -> Any:
    """Analyse a report sent as base64 (``base64`` + ``fileName``) or as a
    path under ``local_intake_dir`` on the server (``filePath``)."""
    try:
        if body.base64:
            handle = load_document_from_base64(
                body.base64,
                body.file_name or "upload",
                max_bytes=settings.max_upload_size_bytes,
                allowed_types=settings.allowed_upload_types,
            )
        else:
            if not settings.local_intake_dir:
                raise InvalidFormatError("Local file intake is disabled")
            handle = load_document_from_path(
                body.file_path or "",
                root=settings.local_intake_dir,
                max_bytes=settings.max_upload_size_bytes,
                allowed_types=settings.allowed_upload_types,
            )
        report = await pipeline.run(handle, actual_age=body.actual_age)
    except AnalysisError as exc:
        raise _http_error(exc) from exc

    return AnalysisResponse(analysis=report.to_dict())


# ---------------------------------------------------------------------------
# GET /analysis/schema
# ---------------------------------------------------------------------------


@router.get("/schema", response_model=SchemaResponse)
async def get_extraction_schema() -> Any:
    """Return the per-page extraction schema and its version."""
    return SchemaResponse(schemaVersion=SCHEMA_VERSION, schema=extraction_json_schema())
