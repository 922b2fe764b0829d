"""End-to-end orchestration: document → pages → extraction → report.

Only the extraction fan-out is concurrent.  Every page is extracted under
``asyncio.Semaphore(extraction_concurrency)``.  One ``pipeline_timeout_s``
deadline covers rendering and extraction together; extraction gets whatever
rendering left.  When the deadline passes, pending pages are cancelled and
recorded as skipped, completed pages are still aggregated, and the report is
flagged incomplete.

Aggregation, scoring and planning are pure, single-threaded functions of
the successful pages sorted by page number.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone

from cellora.analysis.aggregator import aggregate
from cellora.analysis.base import PageAnalysis, PageClassification, PageError, PageImage
from cellora.analysis.cache import ExtractionCache, InMemoryExtractionCache, NullExtractionCache
from cellora.analysis.catalog import TreatmentCatalog, get_treatment_catalog
from cellora.analysis.classifier import classify_pages
from cellora.analysis.errors import AnalysisError, ErrorKind, InsufficientDataError
from cellora.analysis.extractor import PageExtractor
from cellora.analysis.inference import InferenceClient
from cellora.analysis.insights import build_insights
from cellora.analysis.intake import DocumentHandle, render_pages
from cellora.analysis.planner import build_treatment_plan
from cellora.analysis.report_models import Report
from cellora.analysis.schema import SCHEMA_VERSION
from cellora.analysis.scoring import collect_concerns, estimate_age, rank_concerns, summarize
from cellora.config import Settings, get_settings

logger = logging.getLogger("cellora.analysis.pipeline")

DEADLINE_MESSAGE = "pipeline deadline exceeded"


class AnalysisPipeline:
    """Runs the full analysis for one document at a time.

    Args:
        client:   Inference client for the extraction service.
        cache:    Extraction cache shared across runs.
        catalog:  Treatment catalog (the bundled YAML by default).
        settings: Application settings (``get_settings()`` by default).
    """

    def __init__(
        self,
        client: InferenceClient,
        *,
        cache: ExtractionCache | None = None,
        catalog: TreatmentCatalog | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        if cache is None:
            size = self.settings.extraction_cache_size
            cache = InMemoryExtractionCache(size) if size else NullExtractionCache()
        self.cache = cache
        self.catalog = catalog or get_treatment_catalog()
        self.extractor = PageExtractor(
            client,
            self.cache,
            timeout_s=self.settings.extraction_timeout_s,
            max_retries=self.settings.extraction_max_retries,
            backoff_s=self.settings.extraction_retry_backoff_s,
        )

    async def run(self, handle: DocumentHandle, *, actual_age: int | None = None) -> Report:
        """Render the document's pages off the event loop, then analyse them.

        Raises:
            InsufficientDataError: Rendering alone used up the deadline.
        """
        deadline = asyncio.get_running_loop().time() + self.settings.pipeline_timeout_s
        try:
            pages = await asyncio.wait_for(
                asyncio.to_thread(render_pages, handle, dpi=self.settings.render_dpi),
                self.settings.pipeline_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.error(
                "%s: rendering did not finish within %gs",
                handle.filename,
                self.settings.pipeline_timeout_s,
            )
            raise InsufficientDataError(
                f"Pages could not be rendered within {self.settings.pipeline_timeout_s:g}s"
            ) from None
        return await self.run_pages(
            pages,
            source_file=handle.filename,
            fingerprint=handle.fingerprint,
            actual_age=actual_age,
            deadline=deadline,
        )

    async def run_pages(
        self,
        pages: list[PageImage],
        *,
        source_file: str = "",
        fingerprint: str = "",
        actual_age: int | None = None,
        deadline: float | None = None,
    ) -> Report:
        """Analyse already-rendered pages.

        ``deadline`` is an event-loop time; by default it is
        ``pipeline_timeout_s`` from now.

        Raises:
            InsufficientDataError: Fewer than ``min_successful_pages`` pages
                were extracted.
            AggregationInvariantViolation: Aggregated metrics are invalid.
        """
        started = time.perf_counter()
        if deadline is None:
            deadline = asyncio.get_running_loop().time() + self.settings.pipeline_timeout_s
        ordered = sorted(pages, key=lambda p: p.page_number)
        classifications, warnings = classify_pages(ordered)

        analyses, skipped, deadline_hit = await self._extract_all(
            ordered, classifications, deadline
        )

        if len(analyses) < self.settings.min_successful_pages:
            logger.error(
                "%s: only %d of %d pages extracted (need %d)",
                source_file or "<pages>",
                len(analyses),
                len(ordered),
                self.settings.min_successful_pages,
            )
            raise InsufficientDataError(
                f"Only {len(analyses)} of {len(ordered)} pages could be analysed; "
                f"at least {self.settings.min_successful_pages} required"
            )

        metrics = aggregate(analyses)
        # the planner de-duplicates by treatment and must see every occurrence
        found = collect_concerns(analyses, metrics)
        concerns = rank_concerns(found)
        summary = summarize(
            metrics, concerns, concern_limit=self.settings.primary_concern_limit
        )
        age = estimate_age(analyses, summary.overall_skin_health, actual_age)
        plan = build_treatment_plan(found, self.catalog, currency=self.settings.currency)
        insights = build_insights(metrics, summary, age, concerns, plan)

        for analysis in analyses:
            warnings.extend(analysis.warnings)
        for error in skipped:
            warnings.append(f"Page {error.page_number} skipped: {error.kind} ({error.message})")
        if deadline_hit:
            warnings.append(
                f"Analysis stopped after {self.settings.pipeline_timeout_s:g}s; report is partial"
            )

        elapsed_ms = round((time.perf_counter() - started) * 1000)
        report = Report(
            id=str(uuid.uuid4()),
            analyzed_at=datetime.now(timezone.utc).isoformat(),
            source_file=source_file,
            fingerprint=fingerprint,
            total_pages=len(ordered),
            page_analyses=tuple(analyses),
            detailed_metrics=metrics,
            age_analysis=age,
            summary=summary,
            treatment_plan=plan,
            ai_insights=insights,
            skipped_pages=tuple(skipped),
            complete=not skipped,
            warnings=tuple(warnings),
            schema_version=SCHEMA_VERSION,
            processing_time_ms=elapsed_ms,
        )
        logger.info(
            "Report %s for %s: %d/%d pages, health=%d (%s), %d ms",
            report.id,
            source_file or "<pages>",
            len(analyses),
            len(ordered),
            summary.overall_skin_health,
            summary.health_grade,
            elapsed_ms,
        )
        return report

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _extract_all(
        self,
        pages: list[PageImage],
        classifications: list[PageClassification],
        deadline: float,
    ) -> tuple[list[PageAnalysis], list[PageError], bool]:
        """Extract every page concurrently, in bounded parallelism.

        Returns ``(analyses, skipped, deadline_hit)``, both lists in page order.
        """
        semaphore = asyncio.Semaphore(self.settings.extraction_concurrency)
        total = len(pages)
        tasks = [
            asyncio.create_task(self._extract_one(page, cls, semaphore, total))
            for page, cls in zip(pages, classifications)
        ]
        if not tasks:
            return [], [], False

        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        _, pending = await asyncio.wait(tasks, timeout=remaining)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "Pipeline deadline of %gs reached, cancelled %d pages",
                self.settings.pipeline_timeout_s,
                len(pending),
            )

        analyses: list[PageAnalysis] = []
        skipped: list[PageError] = []
        for page, cls, task in zip(pages, classifications, tasks):
            if task in pending:
                skipped.append(
                    PageError(
                        page_number=page.page_number,
                        kind=ErrorKind.EXTRACTION_TIMEOUT.value,
                        message=DEADLINE_MESSAGE,
                        attempts=0,
                        image_type=cls.image_type,
                    )
                )
                continue

            exc = task.exception()
            if exc is None:
                analyses.append(task.result())
            elif isinstance(exc, AnalysisError):
                logger.warning(
                    "Page %d skipped after %d attempt(s): %s: %s",
                    page.page_number,
                    exc.attempts,
                    exc.kind.value,
                    exc.message,
                )
                skipped.append(
                    PageError(
                        page_number=page.page_number,
                        kind=exc.kind.value,
                        message=exc.message,
                        attempts=exc.attempts,
                        image_type=cls.image_type,
                    )
                )
            else:
                logger.error(
                    "Page %d failed with unexpected %s: %s",
                    page.page_number,
                    type(exc).__name__,
                    exc,
                    exc_info=exc,
                )
                skipped.append(
                    PageError(
                        page_number=page.page_number,
                        kind=ErrorKind.EXTRACTION_FAILED.value,
                        message=f"{type(exc).__name__}: {exc}",
                        image_type=cls.image_type,
                    )
                )
        return analyses, skipped, bool(pending)

    async def _extract_one(
        self,
        page: PageImage,
        classification: PageClassification,
        semaphore: asyncio.Semaphore,
        total_pages: int,
    ) -> PageAnalysis:
        async with semaphore:
            return await self.extractor.extract(page, classification, total_pages=total_pages)
