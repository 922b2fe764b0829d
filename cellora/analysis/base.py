"""Page-level data models for the Cellora skin report engine.

Every stage of the pipeline consumes and produces these immutable records.
``to_dict()`` renders the stable camelCase wire contract consumed by the
presentation layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger("cellora.analysis")

#: The seven sub-metric categories of ``DetailedSkinMetrics``, in report order.
CATEGORIES: tuple[str, ...] = (
    "texture",
    "pores",
    "wrinkles",
    "pigmentation",
    "vascular",
    "hydration",
    "elasticity",
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ImageType(str, Enum):
    """Capture modality of a report page."""

    STANDARD = "standard"
    UV = "uv"
    POLARIZED = "polarized"
    CROSS_POLARIZED = "cross-polarized"
    PARALLEL_POLARIZED = "parallel-polarized"
    ENHANCED = "enhanced"
    OTHER = "other"

    @property
    def is_visible_light(self) -> bool:
        return self in VISIBLE_LIGHT_TYPES


VISIBLE_LIGHT_TYPES: frozenset[ImageType] = frozenset(
    {
        ImageType.STANDARD,
        ImageType.POLARIZED,
        ImageType.CROSS_POLARIZED,
        ImageType.PARALLEL_POLARIZED,
        ImageType.ENHANCED,
    }
)


class Severity(str, Enum):
    """Severity band for a region or condition.

    Bands are a step function of the 0–100 region score:
        NORMAL    >= 85
        MILD      >= 70
        MODERATE  >= 50
        SEVERE     < 50
    """

    NORMAL = "normal"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"

    @classmethod
    def for_score(cls, score: float) -> "Severity":
        if score >= 85:
            return cls.NORMAL
        if score >= 70:
            return cls.MILD
        if score >= 50:
            return cls.MODERATE
        return cls.SEVERE

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.NORMAL: 0,
    Severity.MILD: 1,
    Severity.MODERATE: 2,
    Severity.SEVERE: 3,
}


def worst_severity(severities: list[Severity]) -> Severity | None:
    """Return the highest-ranked severity, or None for an empty list."""
    if not severities:
        return None
    return max(severities, key=lambda s: s.rank)


class Contribution(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ---------------------------------------------------------------------------
# Rendered page and its classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PageImage:
    """One rendered page of an intake document.

    Attributes:
        page_number: 1-based page number in the source document.
        image_bytes: Encoded page raster (PNG for PDFs, original bytes for
                     single-image documents).
        mime_type:   Mime type of ``image_bytes``.
        width:       Raster width in pixels.
        height:      Raster height in pixels.
        text:        Text layer (or OCR output) used for classification cues.
    """

    page_number: int
    image_bytes: bytes
    mime_type: str = "image/png"
    width: int = 0
    height: int = 0
    text: str = ""


@dataclass(frozen=True)
class PageClassification:
    """Classifier verdict for a single page."""

    page_number: int
    image_type: ImageType
    confidence: float
    cues: tuple[str, ...] = ()
    ambiguous: bool = False

    def to_dict(self) -> dict:
        return {
            "pageNumber": self.page_number,
            "imageType": self.image_type.value,
            "confidence": round(self.confidence, 4),
            "cues": list(self.cues),
            "ambiguous": self.ambiguous,
        }


# ---------------------------------------------------------------------------
# Extraction results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConditionDetection:
    """A skin condition reported on one page.

    Attributes:
        condition:             Condition name exactly as reported.
        confidence:            0.0–1.0 detection confidence.
        locations:             Anatomical regions where it was seen.
        description:           Free-text description from the extractor.
        suggested_treatments:  Treatments the extractor suggested.
        canonical:             Normalised condition key (``None`` if unknown).
        category:              Sub-metric category the condition feeds.
    """

    condition: str
    confidence: float
    locations: tuple[str, ...] = ()
    description: str = ""
    suggested_treatments: tuple[str, ...] = ()
    canonical: str | None = None
    category: str | None = None

    @property
    def key(self) -> str:
        return self.canonical or self.condition.strip().lower()

    def to_dict(self) -> dict:
        return {
            "condition": self.condition,
            "canonical": self.canonical,
            "category": self.category,
            "confidence": round(self.confidence, 4),
            "locations": list(self.locations),
            "description": self.description,
            "suggestedTreatments": list(self.suggested_treatments),
        }


@dataclass(frozen=True)
class RegionAnalysis:
    """Per-region score.  ``severity`` is always ``Severity.for_score(score)``."""

    region: str
    score: int
    severity: Severity
    findings: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        expected = Severity.for_score(self.score)
        if self.severity is not expected:
            raise ValueError(
                f"Region {self.region!r}: severity {self.severity.value} does not "
                f"match score {self.score} (expected {expected.value})"
            )

    def to_dict(self) -> dict:
        return {
            "region": self.region,
            "severity": self.severity.value,
            "score": self.score,
            "findings": list(self.findings),
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class AgingFactor:
    factor: str
    contribution: Contribution
    description: str = ""

    def to_dict(self) -> dict:
        return {
            "factor": self.factor,
            "contribution": self.contribution.value,
            "description": self.description,
        }


@dataclass(frozen=True)
class PageAnalysis:
    """Validated analysis of one successfully extracted page.

    Attributes:
        page_number:    1-based page number.
        image_type:     Resolved capture modality.
        findings:       Key findings, in reported order.
        conditions:     Detected conditions (all confidences, unfiltered).
        regions:        Per-region scores.
        raw_metrics:    Numeric / textual readings printed on the page.
        detected_mode:  Extractor's description of the capture mode.
        description:    Extractor's free-text page description.
        aging_factors:  Aging factors observed on this page.
        apparent_age:   Apparent age estimate for this page, if any.
        classification: Independent classifier verdict for the page.
        warnings:       Non-fatal issues found while validating the page.
    """

    page_number: int
    image_type: ImageType
    findings: tuple[str, ...] = ()
    conditions: tuple[ConditionDetection, ...] = ()
    regions: tuple[RegionAnalysis, ...] = ()
    raw_metrics: dict[str, Any] = field(default_factory=dict)
    detected_mode: str = ""
    description: str = ""
    aging_factors: tuple[AgingFactor, ...] = ()
    apparent_age: int | None = None
    classification: PageClassification | None = None
    warnings: tuple[str, ...] = ()

    def numeric_metric(self, *keys: str) -> float | None:
        """Return the first numeric raw metric among ``keys``."""
        for key in keys:
            value = self.raw_metrics.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
        return None

    def to_dict(self) -> dict:
        return {
            "pageNumber": self.page_number,
            "imageType": self.image_type.value,
            "detectedMode": self.detected_mode,
            "description": self.description,
            "keyFindings": list(self.findings),
            "conditions": [c.to_dict() for c in self.conditions],
            "regionAnalysis": [r.to_dict() for r in self.regions],
            "rawMetrics": dict(self.raw_metrics),
            "agingFactors": [f.to_dict() for f in self.aging_factors],
            "apparentAge": self.apparent_age,
            "classification": self.classification.to_dict()
            if self.classification
            else None,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class PageError:
    """Sidecar record for a page that produced no ``PageAnalysis``."""

    page_number: int
    kind: str
    message: str
    attempts: int = 1
    image_type: ImageType | None = None

    def to_dict(self) -> dict:
        return {
            "pageNumber": self.page_number,
            "kind": self.kind,
            "message": self.message,
            "attempts": self.attempts,
            "imageType": self.image_type.value if self.image_type else None,
        }
