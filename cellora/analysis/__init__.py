"""Cellora Skin Report Engine: public API.

Usage::

    from cellora.analysis import AnthropicVisionClient, analyze_document

    with open("report.pdf", "rb") as f:
        report = await analyze_document(f.read(), "report.pdf", AnthropicVisionClient())

    print(report.summary.overall_skin_health)       # e.g. 72
    print(report.summary.health_grade)              # "C"
    for concern in report.summary.primary_concerns:
        print(concern.name, concern.severity.value, concern.urgency.value)
"""

from __future__ import annotations

from cellora.analysis.base import (
    ConditionDetection,
    ImageType,
    PageAnalysis,
    PageError,
    RegionAnalysis,
    Severity,
)
from cellora.analysis.cache import ExtractionCache, InMemoryExtractionCache
from cellora.analysis.errors import AnalysisError, ErrorKind
from cellora.analysis.inference import AnthropicVisionClient, InferenceClient
from cellora.analysis.intake import DocumentHandle, load_document
from cellora.analysis.pipeline import AnalysisPipeline
from cellora.analysis.report_models import DetailedSkinMetrics, Report, TreatmentPlan
from cellora.config import Settings

__all__ = [
    "analyze_document",
    "AnalysisError",
    "AnalysisPipeline",
    "AnthropicVisionClient",
    "ConditionDetection",
    "DetailedSkinMetrics",
    "DocumentHandle",
    "ErrorKind",
    "ExtractionCache",
    "ImageType",
    "InMemoryExtractionCache",
    "InferenceClient",
    "PageAnalysis",
    "PageError",
    "RegionAnalysis",
    "Report",
    "Severity",
    "TreatmentPlan",
]


async def analyze_document(
    file_bytes: bytes,
    filename: str,
    client: InferenceClient,
    *,
    actual_age: int | None = None,
    cache: ExtractionCache | None = None,
    settings: Settings | None = None,
) -> Report:
    """Analyse a skin-imaging report and return one consolidated :class:`Report`.

    This is the single entry point for library callers: it validates the
    document, renders its pages, extracts each page through ``client`` and
    folds the results into a report.

    Args:
        file_bytes: Raw PDF or image bytes.
        filename:   Declared filename; its extension must match the content.
        client:     Inference client for the extraction service.
        actual_age: Patient's actual age, when known.
        cache:      Extraction cache to reuse across calls.
        settings:   Settings override.

    Raises:
        AnalysisError: ``InvalidFormat``, ``TooLarge``, ``InsufficientData`` or
            ``AggregationInvariantViolation``.  Per-page failures never raise;
            they are listed in ``report.skipped_pages``.
    """
    pipeline = AnalysisPipeline(client, cache=cache, settings=settings)
    handle = load_document(
        file_bytes,
        filename,
        max_bytes=pipeline.settings.max_upload_size_bytes,
        allowed_types=pipeline.settings.allowed_upload_types,
    )
    return await pipeline.run(handle, actual_age=actual_age)
