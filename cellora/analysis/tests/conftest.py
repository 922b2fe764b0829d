"""Shared test fixtures and helpers for the skin report engine test suite.

Synthetic pages are used throughout; no real patient reports are committed
to the repo.  Page images are tiny solid-colour PNGs; extraction responses
come from a scripted fake client, so no test touches the network.
"""

from __future__ import annotations

import asyncio
import io
import json
from collections import Counter
from typing import Any, Callable

import fitz  # PyMuPDF
import pytest
from PIL import Image

from cellora.analysis.base import PageAnalysis, PageImage, Severity
from cellora.analysis.catalog import TreatmentCatalog, get_treatment_catalog
from cellora.analysis.extractor import to_page_analysis
from cellora.analysis.inference import ExtractionRequest, InferenceClient
from cellora.analysis.schema import PageExtraction
from cellora.config import Settings

# ---------------------------------------------------------------------------
# Synthetic images and documents
# ---------------------------------------------------------------------------

SKIN_TONE = (205, 170, 150)
UV_VIOLET = (30, 20, 90)


def make_png(color: tuple[int, int, int] = SKIN_TONE, size: tuple[int, int] = (24, 24)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def make_jpeg(color: tuple[int, int, int] = SKIN_TONE) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (24, 24), color).save(buf, format="JPEG")
    return buf.getvalue()


def make_pdf(page_texts: list[str]) -> bytes:
    """A PDF with one text page per entry."""
    doc = fitz.open()
    for text in page_texts:
        page = doc.new_page(width=300, height=200)
        page.insert_text((20, 40), text, fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


def make_page(page_number: int, text: str = "Standard light", color: tuple[int, int, int] | None = None) -> PageImage:
    """A rendered page whose bytes are unique per page number."""
    if color is None:
        color = (min(255, SKIN_TONE[0] + page_number), SKIN_TONE[1], SKIN_TONE[2])
    return PageImage(page_number=page_number, image_bytes=make_png(color), text=text)


def make_uv_page(page_number: int, text: str = "UV light") -> PageImage:
    return make_page(page_number, text=text, color=(UV_VIOLET[0], UV_VIOLET[1], UV_VIOLET[2] + page_number))


# ---------------------------------------------------------------------------
# Extraction payload builders (camelCase, as the service returns them)
# ---------------------------------------------------------------------------


def condition(
    name: str,
    confidence: float = 0.8,
    locations: tuple[str, ...] = ("cheeks",),
    **extra: Any,
) -> dict[str, Any]:
    return {
        "condition": name,
        "confidence": confidence,
        "locations": list(locations),
        "description": extra.get("description", ""),
        "suggestedTreatments": list(extra.get("suggested_treatments", ())),
    }


def region(
    name: str,
    score: int,
    findings: tuple[str, ...] = (),
    severity: str | None = None,
    recommendations: tuple[str, ...] = (),
) -> dict[str, Any]:
    return {
        "region": name,
        "score": score,
        "severity": severity or Severity.for_score(score).value,
        "findings": list(findings),
        "recommendations": list(recommendations),
    }


def page_payload(
    page_number: int,
    image_type: str = "standard",
    *,
    conditions: list[dict] | None = None,
    regions: list[dict] | None = None,
    raw_metrics: dict[str, Any] | None = None,
    aging_factors: list[dict] | None = None,
    apparent_age: int | None = None,
    findings: list[str] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "pageNumber": page_number,
        "imageType": image_type,
        "detectedMode": image_type,
        "description": f"Synthetic {image_type} page",
        "keyFindings": findings or [],
        "conditions": conditions or [],
        "regionAnalysis": regions or [],
        "rawMetrics": raw_metrics or {},
        "agingFactors": aging_factors or [],
    }
    if apparent_age is not None:
        payload["apparentAge"] = apparent_age
    return payload


def analysis_from(payload: dict[str, Any]) -> PageAnalysis:
    """Validate a payload and convert it exactly as the extractor does."""
    return to_page_analysis(PageExtraction.model_validate(payload))


# ---------------------------------------------------------------------------
# Scripted inference client
# ---------------------------------------------------------------------------

# A scripted step: response text, a payload dict, an exception to raise, or
# a coroutine function to await (for slow / hanging pages).
Step = str | dict | Exception | Callable[[], Any]


class FakeInferenceClient(InferenceClient):
    """Replays a per-page script.  A list script is consumed one step per call;
    the last step repeats."""

    model = "fake-vision-1"

    def __init__(self, script: dict[int, Step | list[Step]] | None = None) -> None:
        self.script = script or {}
        self.calls: Counter[int] = Counter()

    async def extract(self, request: ExtractionRequest) -> str:
        page = request.page_number
        self.calls[page] += 1
        steps = self.script.get(page)
        if steps is None:
            return json.dumps(page_payload(page))
        if isinstance(steps, list):
            step = steps[min(self.calls[page], len(steps)) - 1]
        else:
            step = steps
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return await step()
        if isinstance(step, dict):
            return json.dumps(step)
        return step


def hang(seconds: float = 30.0) -> Callable[[], Any]:
    async def _sleep() -> str:
        await asyncio.sleep(seconds)
        return "{}"

    return _sleep


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        extraction_timeout_s=1.0,
        pipeline_timeout_s=5.0,
        extraction_max_retries=2,
        extraction_retry_backoff_s=0.0,
        extraction_concurrency=4,
        min_successful_pages=1,
    )


@pytest.fixture()
def catalog() -> TreatmentCatalog:
    return get_treatment_catalog()


@pytest.fixture()
def uv_report_pages() -> tuple[list[PageImage], FakeInferenceClient]:
    """Two standard pages with one visible spot each and a UV page with six."""
    pages = [make_page(1), make_page(2), make_uv_page(3)]
    client = FakeInferenceClient(
        {
            1: page_payload(
                1,
                conditions=[condition("Sun spots", 0.8, ("cheeks",))],
                regions=[region("cheeks", 78, ("scattered brown spots",))],
                raw_metrics={"pigmentSpots": 1},
            ),
            2: page_payload(
                2,
                conditions=[condition("Sun spots", 0.7, ("forehead",))],
                regions=[region("forehead", 88, ("even pigment",))],
                raw_metrics={"pigmentSpots": 1},
            ),
            3: page_payload(
                3,
                "uv",
                regions=[region("cheeks", 60, ("subsurface UV spots",))],
                raw_metrics={"uvSpots": 6},
            ),
        }
    )
    return pages, client
