"""Per-page extraction: call, validate, retry, cache.

Each page goes through:

  1. cache lookup by content fingerprint (page bytes + schema version + model)
  2. the upstream call, bounded by ``asyncio.wait_for``
  3. retries with linear backoff, for timeouts and transient failures only
  4. strict schema validation of the response (never retried)
  5. conversion to the immutable :class:`PageAnalysis` domain record, with
     condition names normalised to canonical keys
"""

from __future__ import annotations

import asyncio
import logging

from cellora.analysis.base import (
    AgingFactor,
    ConditionDetection,
    Contribution,
    ImageType,
    PageAnalysis,
    PageClassification,
    PageImage,
    RegionAnalysis,
    Severity,
)
from cellora.analysis.cache import ExtractionCache, InMemoryExtractionCache, extraction_fingerprint
from cellora.analysis.classifier import resolve_image_type
from cellora.analysis.errors import ExtractionError, ExtractionTimeout
from cellora.analysis.inference import ExtractionRequest, InferenceClient
from cellora.analysis.normalizer import category_for_condition, normalize_condition_name
from cellora.analysis.schema import SCHEMA_VERSION, PageExtraction, parse_page_extraction

logger = logging.getLogger("cellora.analysis.extractor")


class PageExtractor:
    """Turns one rendered page into a validated :class:`PageAnalysis`.

    Args:
        client:      Inference client for the external service.
        cache:       Extraction cache; a private in-memory cache by default.
        timeout_s:   Per-call timeout.
        max_retries: Extra attempts after the first, for retryable errors.
        backoff_s:   Linear backoff unit; attempt *n* waits ``n * backoff_s``.
    """

    def __init__(
        self,
        client: InferenceClient,
        cache: ExtractionCache | None = None,
        *,
        timeout_s: float = 20.0,
        max_retries: int = 2,
        backoff_s: float = 0.5,
    ) -> None:
        self.client = client
        self.cache = cache if cache is not None else InMemoryExtractionCache()
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s

    async def extract(
        self,
        page: PageImage,
        classification: PageClassification | None = None,
        *,
        total_pages: int = 1,
    ) -> PageAnalysis:
        """Extract one page.

        Raises:
            ExtractionTimeout:   Every attempt timed out.
            ExtractionTransient: Every attempt hit a transient upstream error.
            SchemaViolation:     The response failed validation.
            ExtractionFailed:    Upstream rejected the request.
        """
        key = extraction_fingerprint(page.image_bytes, SCHEMA_VERSION, self.client.model)

        cached = await self.cache.get(key)
        if cached is not None:
            extraction = PageExtraction.model_validate_json(cached)
            if extraction.page_number != page.page_number:
                extraction = extraction.model_copy(update={"page_number": page.page_number})
            logger.debug("Page %d: extraction cache hit", page.page_number)
            return to_page_analysis(extraction, classification)

        request = ExtractionRequest(
            page_number=page.page_number,
            total_pages=total_pages,
            image_bytes=page.image_bytes,
            mime_type=page.mime_type,
            classification=classification,
        )
        raw, attempts = await self._call_with_retry(request)

        try:
            extraction = parse_page_extraction(raw, expected_page=page.page_number)
        except ExtractionError as exc:
            exc.attempts = attempts
            raise

        await self.cache.set(key, extraction.model_dump_json(by_alias=True))
        return to_page_analysis(extraction, classification)

    async def _call_with_retry(self, request: ExtractionRequest) -> tuple[str, int]:
        page = request.page_number
        attempt = 0
        while True:
            attempt += 1
            try:
                raw = await asyncio.wait_for(self.client.extract(request), self.timeout_s)
                return raw, attempt
            except asyncio.TimeoutError:
                error: ExtractionError = ExtractionTimeout(
                    f"No response within {self.timeout_s:g}s", page_number=page
                )
            except ExtractionError as exc:
                error = exc
                if error.page_number is None:
                    error.page_number = page

            error.attempts = attempt
            if not error.retryable or attempt > self.max_retries:
                raise error

            delay = self.backoff_s * attempt
            logger.info(
                "Page %d: %s on attempt %d, retrying in %.2fs",
                page,
                error.kind.value,
                attempt,
                delay,
            )
            await asyncio.sleep(delay)


# ---------------------------------------------------------------------------
# Payload → domain
# ---------------------------------------------------------------------------


def to_page_analysis(
    extraction: PageExtraction,
    classification: PageClassification | None = None,
) -> PageAnalysis:
    """Convert a validated payload into a :class:`PageAnalysis`."""
    page = extraction.page_number
    warnings: list[str] = []

    reported = ImageType(extraction.image_type)
    image_type = resolve_image_type(classification, reported)
    if image_type is not reported:
        warnings.append(
            f"Page {page}: extractor reported {reported.value}, "
            f"classifier saw {image_type.value}; using {image_type.value}"
        )

    conditions: list[ConditionDetection] = []
    for item in extraction.conditions:
        canonical, _ = normalize_condition_name(item.condition)
        if canonical is None:
            warnings.append(f"Page {page}: unrecognised condition {item.condition!r}")
        conditions.append(
            ConditionDetection(
                condition=item.condition,
                confidence=item.confidence,
                locations=tuple(item.locations),
                description=item.description,
                suggested_treatments=tuple(item.suggested_treatments),
                canonical=canonical,
                category=category_for_condition(canonical, item.condition),
            )
        )

    # severity agrees with the score band; the schema rejects anything else
    regions = [
        RegionAnalysis(
            region=item.region,
            score=item.score,
            severity=Severity(item.severity),
            findings=tuple(item.findings),
            recommendations=tuple(item.recommendations),
        )
        for item in extraction.region_analysis
    ]

    for warning in warnings:
        logger.debug("%s", warning)

    return PageAnalysis(
        page_number=page,
        image_type=image_type,
        findings=tuple(extraction.key_findings),
        conditions=tuple(conditions),
        regions=tuple(regions),
        raw_metrics=dict(extraction.raw_metrics),
        detected_mode=extraction.detected_mode,
        description=extraction.description,
        aging_factors=tuple(
            AgingFactor(
                factor=f.factor,
                contribution=Contribution(f.contribution),
                description=f.description,
            )
            for f in extraction.aging_factors
        ),
        apparent_age=extraction.apparent_age,
        classification=classification,
        warnings=tuple(warnings),
    )
