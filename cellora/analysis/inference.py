"""Client for the external vision-language extraction service.

The pipeline only sees :class:`InferenceClient`; the production
implementation wraps the Anthropic Messages API.  Upstream failures are
translated into the extraction error taxonomy here so that the retry policy
in the extractor never has to know about SDK exception types.
"""

from __future__ import annotations

import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import anthropic

from cellora.analysis.base import PageClassification
from cellora.analysis.errors import ExtractionFailed, ExtractionTimeout, ExtractionTransient
from cellora.analysis.schema import SCHEMA_VERSION, extraction_json_schema

logger = logging.getLogger("cellora.analysis.inference")

DEFAULT_MODEL = "claude-haiku-4-5-20251001"

_SYSTEM_PROMPT = """\
You are a dermatology imaging analyst. You receive ONE page of a clinical \
skin-imaging report (standard light, UV, cross- or parallel-polarised, or an \
enhanced filter view).

Describe only what the page shows. For the page, output a JSON object that \
matches the JSON schema you are given, with these rules:
- pageNumber: the page number you are told in the request.
- imageType: one of standard, uv, polarized, cross-polarized, \
parallel-polarized, enhanced, other.
- conditions: every skin condition you can see, with confidence 0.0-1.0 and \
the anatomical locations (forehead, cheeks, nose, chin, periorbital, ...).
- regionAnalysis: one entry per facial region with an integer score 0-100 \
(100 = healthy) and severity normal (>=85), mild (>=70), moderate (>=50) or \
severe (<50).
- rawMetrics: numbers printed on the page (e.g. poreCount, wrinkleCount, \
pigmentSpots, uvSpots, moistureLevel, sebumLevel). Counts are non-negative \
integers.
- agingFactors and apparentAge only when the page supports them.

Output ONLY the JSON object. No explanation, no markdown.
"""

_USER_PROMPT = """\
Analyse page {page_number} of {total_pages}.
The page classifier suggests image type "{image_type}" (confidence {confidence:.2f}).
Return JSON matching schema version {schema_version}:
{schema}
"""


@dataclass(frozen=True)
class ExtractionRequest:
    """Everything the service needs to analyse one page."""

    page_number: int
    total_pages: int
    image_bytes: bytes
    mime_type: str
    classification: PageClassification | None = None

    def user_prompt(self) -> str:
        image_type = self.classification.image_type.value if self.classification else "other"
        confidence = self.classification.confidence if self.classification else 0.0
        return _USER_PROMPT.format(
            page_number=self.page_number,
            total_pages=self.total_pages,
            image_type=image_type,
            confidence=confidence,
            schema_version=SCHEMA_VERSION,
            schema=json.dumps(extraction_json_schema(), separators=(",", ":")),
        )


class InferenceClient(ABC):
    """Sends one page to the extraction service and returns its raw text."""

    #: Model identifier, part of the extraction cache key.
    model: str = "unknown"

    @abstractmethod
    async def extract(self, request: ExtractionRequest) -> str:
        """Return the raw response text.

        Raises:
            ExtractionTimeout:   The upstream call timed out.
            ExtractionTransient: Network error, rate limit or 5xx.
            ExtractionFailed:    Any other upstream rejection.
        """


class AnthropicVisionClient(InferenceClient):
    """Extraction over the Anthropic Messages API with an image block."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 4096,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self.model = model
        self._max_tokens = max_tokens
        # SDK retries are disabled; the extractor owns the retry policy.
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key or None, max_retries=0
        )

    async def extract(self, request: ExtractionRequest) -> str:
        image_block = {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": request.mime_type,
                "data": base64.standard_b64encode(request.image_bytes).decode("ascii"),
            },
        }
        page = request.page_number
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self._max_tokens,
                system=_SYSTEM_PROMPT,
                messages=[
                    {
                        "role": "user",
                        "content": [image_block, {"type": "text", "text": request.user_prompt()}],
                    }
                ],
            )
        except anthropic.APITimeoutError as exc:
            raise ExtractionTimeout(f"Upstream timeout: {exc}", page_number=page) from exc
        except anthropic.APIConnectionError as exc:
            raise ExtractionTransient(f"Connection error: {exc}", page_number=page) from exc
        except anthropic.APIStatusError as exc:
            if exc.status_code == 429 or exc.status_code >= 500:
                raise ExtractionTransient(
                    f"Upstream returned {exc.status_code}", page_number=page
                ) from exc
            raise ExtractionFailed(
                f"Upstream rejected request ({exc.status_code}): {exc.message}",
                page_number=page,
            ) from exc

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip()
        logger.debug(
            "Page %d: %d chars from %s (stop_reason=%s)",
            page,
            len(text),
            self.model,
            response.stop_reason,
        )
        return text
