"""Versioned response schema for the per-page extraction service.

The aggregator hard-codes the field names and types below, so the shape is a
contract: bump ``SCHEMA_VERSION`` whenever it changes.  Every response is
validated here before it becomes a :class:`~cellora.analysis.base.PageAnalysis`;
type and range violations raise :class:`SchemaViolation` and are never
coerced.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Annotated, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

from cellora.analysis.base import Severity
from cellora.analysis.errors import SchemaViolation

logger = logging.getLogger("cellora.analysis.schema")

SCHEMA_VERSION = "1.0"

#: Raw metrics that are counts; they must be non-negative when present.
COUNT_METRICS: frozenset[str] = frozenset(
    {
        "poreCount",
        "enlargedPores",
        "mediumPores",
        "finePores",
        "wrinkleCount",
        "deepWrinkles",
        "moderateWrinkles",
        "fineWrinkles",
        "dynamicWrinkles",
        "staticWrinkles",
        "pigmentSpots",
        "uvSpots",
        "redSpots",
    }
)

#: Raw metrics that are 0–100 levels; they must stay in range when present.
LEVEL_METRICS: frozenset[str] = frozenset(
    {
        "moistureLevel",
        "sebumLevel",
        "oilLevel",
        "elasticityScore",
        "firmness",
        "rednessLevel",
        "roughnessIndex",
        "uniformityIndex",
        "evenness",
    }
)

Confidence = Annotated[float, Field(strict=True, ge=0.0, le=1.0)]
Score = Annotated[StrictInt, Field(ge=0, le=100)]
MetricValue = Union[StrictInt, StrictFloat, StrictStr]

ImageTypeLiteral = Literal[
    "standard",
    "uv",
    "polarized",
    "cross-polarized",
    "parallel-polarized",
    "enhanced",
    "other",
]
SeverityLiteral = Literal["normal", "mild", "moderate", "severe"]


class _SchemaBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ConditionPayload(_SchemaBase):
    condition: StrictStr = Field(min_length=1)
    confidence: Confidence
    locations: list[StrictStr] = Field(default_factory=list)
    description: StrictStr = ""
    suggested_treatments: list[StrictStr] = Field(
        default_factory=list, alias="suggestedTreatments"
    )


class RegionPayload(_SchemaBase):
    region: StrictStr = Field(min_length=1)
    severity: SeverityLiteral
    score: Score
    findings: list[StrictStr] = Field(default_factory=list)
    recommendations: list[StrictStr] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_severity_band(self) -> "RegionPayload":
        band = Severity.for_score(self.score)
        if self.severity != band.value:
            raise ValueError(
                f"severity {self.severity!r} contradicts score {self.score} "
                f"(band {band.value!r})"
            )
        return self


class AgingFactorPayload(_SchemaBase):
    factor: StrictStr = Field(min_length=1)
    contribution: Literal["low", "medium", "high"]
    description: StrictStr = ""


class PageExtraction(_SchemaBase):
    """Structured analysis of one report page, as returned by the service."""

    page_number: StrictInt = Field(ge=1, alias="pageNumber")
    image_type: ImageTypeLiteral = Field(alias="imageType")
    detected_mode: StrictStr = Field(default="", alias="detectedMode")
    description: StrictStr = ""
    key_findings: list[StrictStr] = Field(default_factory=list, alias="keyFindings")
    conditions: list[ConditionPayload] = Field(default_factory=list)
    region_analysis: list[RegionPayload] = Field(
        default_factory=list, alias="regionAnalysis"
    )
    raw_metrics: dict[str, MetricValue] = Field(default_factory=dict, alias="rawMetrics")
    aging_factors: list[AgingFactorPayload] = Field(
        default_factory=list, alias="agingFactors"
    )
    apparent_age: Annotated[StrictInt, Field(ge=1, le=120)] | None = Field(
        default=None, alias="apparentAge"
    )

    @field_validator("raw_metrics")
    @classmethod
    def _check_known_metrics(cls, value: dict[str, MetricValue]) -> dict[str, MetricValue]:
        for key, metric in value.items():
            numeric = isinstance(metric, (int, float))
            if numeric and not math.isfinite(metric):
                raise ValueError(f"rawMetrics.{key} must be finite, got {metric}")
            if key in COUNT_METRICS:
                if not numeric:
                    raise ValueError(f"rawMetrics.{key} must be a number, got {metric!r}")
                if metric < 0:
                    raise ValueError(f"rawMetrics.{key} must be >= 0, got {metric}")
            elif key in LEVEL_METRICS and numeric and not (0 <= metric <= 100):
                raise ValueError(f"rawMetrics.{key} = {metric} is out of range [0, 100]")
        return value


def extraction_json_schema() -> dict:
    """JSON schema sent to the extraction service as the target shape."""
    schema = PageExtraction.model_json_schema(by_alias=True)
    schema["title"] = f"PageExtraction v{SCHEMA_VERSION}"
    return schema


_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def parse_page_extraction(raw_text: str, *, expected_page: int) -> PageExtraction:
    """Parse and validate a raw service response for one page.

    Accepts a bare JSON object or one wrapped in prose / a markdown fence.

    Raises:
        SchemaViolation: If the text holds no JSON object, the object fails
            validation, or it describes a different page.
    """
    text = raw_text.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT_RE.search(text)
        if not match:
            raise SchemaViolation(
                "Response did not contain a JSON object", page_number=expected_page
            ) from None
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as exc:
            raise SchemaViolation(
                f"Response contained invalid JSON: {exc}", page_number=expected_page
            ) from exc

    if not isinstance(data, dict):
        raise SchemaViolation(
            f"Expected a JSON object, got {type(data).__name__}",
            page_number=expected_page,
        )

    try:
        extraction = PageExtraction.model_validate(data)
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()[:5]
        )
        raise SchemaViolation(
            f"Schema validation failed ({exc.error_count()} errors): {errors}",
            page_number=expected_page,
        ) from exc

    if extraction.page_number != expected_page:
        raise SchemaViolation(
            f"Response describes page {extraction.page_number}, expected {expected_page}",
            page_number=expected_page,
        )
    return extraction
