"""Report-level data models: aggregated metrics, summary, treatment plan.

Everything here is produced downstream of the aggregator and is immutable.
``to_dict()`` renders the camelCase wire contract.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from cellora.analysis.base import AgingFactor, PageAnalysis, PageError, Severity

# Displayed UV ratio is clamped to this range; the stored ratio is not.
UV_RATIO_DISPLAY_MAX = 10.0


#: Health grade lower bounds, best first.  Anything below the last is "F".
GRADE_BANDS: tuple[tuple[str, int], ...] = (("A", 90), ("B", 80), ("C", 60), ("D", 40))


def grade_for(score: float) -> str:
    """Letter grade for a 0–100 score."""
    for grade, floor in GRADE_BANDS:
        if score >= floor:
            return grade
    return "F"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Urgency(str, Enum):
    IMMEDIATE = "immediate"
    SOON = "soon"
    PREVENTIVE = "preventive"
    ROUTINE = "routine"

    @property
    def rank(self) -> int:
        return _URGENCY_RANK[self]


_URGENCY_RANK: dict[Urgency, int] = {
    Urgency.IMMEDIATE: 3,
    Urgency.SOON: 2,
    Urgency.PREVENTIVE: 1,
    Urgency.ROUTINE: 0,
}


class Priority(str, Enum):
    ESSENTIAL = "essential"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[Priority, int] = {
    Priority.ESSENTIAL: 2,
    Priority.RECOMMENDED: 1,
    Priority.OPTIONAL: 0,
}


class TreatmentCategory(str, Enum):
    LASER = "laser"
    INJECTABLE = "injectable"
    DEVICE = "device"
    TOPICAL = "topical"
    COMBINATION = "combination"


# ---------------------------------------------------------------------------
# Detailed skin metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextureMetrics:
    overall_score: int
    roughness_index: float
    uniformity_index: float
    smoothness_grade: str
    micro_texture_quality: float

    def to_dict(self) -> dict:
        return {
            "overallScore": self.overall_score,
            "roughnessIndex": self.roughness_index,
            "uniformityIndex": self.uniformity_index,
            "smoothnessGrade": self.smoothness_grade,
            "microTextureQuality": self.micro_texture_quality,
        }


@dataclass(frozen=True)
class PoreMetrics:
    overall_score: int
    total_count: int
    density: float
    enlarged: int
    medium: int
    fine: int
    problem_areas: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "overallScore": self.overall_score,
            "totalCount": self.total_count,
            "density": self.density,
            "sizeDistribution": {
                "enlarged": self.enlarged,
                "medium": self.medium,
                "fine": self.fine,
            },
            "problemAreas": list(self.problem_areas),
        }


@dataclass(frozen=True)
class WrinkleMetrics:
    overall_score: int
    total_count: int
    deep: int
    moderate: int
    fine: int
    dynamic: int
    static: int
    primary_locations: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "overallScore": self.overall_score,
            "totalCount": self.total_count,
            "depthClassification": {
                "deep": self.deep,
                "moderate": self.moderate,
                "fine": self.fine,
            },
            "primaryLocations": list(self.primary_locations),
            "dynamicVsStatic": {"dynamic": self.dynamic, "static": self.static},
        }


@dataclass(frozen=True)
class PigmentationIssue:
    type: str
    name: str
    severity: Severity
    coverage: float
    locations: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "name": self.name,
            "severity": self.severity.value,
            "coverage": self.coverage,
            "locations": list(self.locations),
        }


@dataclass(frozen=True)
class UVDamage:
    """Visible vs UV-only pigmentation.

    ``ratio`` keeps the full value; the wire form clamps it for display.
    """

    visible: int
    hidden: int
    ratio: float
    risk_level: RiskLevel

    @property
    def display_ratio(self) -> float:
        return round(min(max(self.ratio, 0.0), UV_RATIO_DISPLAY_MAX), 2)

    def to_dict(self) -> dict:
        return {
            "visible": self.visible,
            "hidden": self.hidden,
            "ratio": self.display_ratio,
            "riskLevel": self.risk_level.value,
        }


@dataclass(frozen=True)
class PigmentationMetrics:
    overall_score: int
    evenness: float
    uv_damage: UVDamage
    issues: tuple[PigmentationIssue, ...] = ()

    def to_dict(self) -> dict:
        return {
            "overallScore": self.overall_score,
            "evenness": self.evenness,
            "issues": [i.to_dict() for i in self.issues],
            "uvDamage": self.uv_damage.to_dict(),
        }


@dataclass(frozen=True)
class VascularMetrics:
    overall_score: int
    redness_level: float
    telangiectasia: bool
    rosacea_indicators: bool
    inflammation_level: str  # none | mild | moderate | severe
    affected_areas: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "overallScore": self.overall_score,
            "rednessLevel": self.redness_level,
            "telangiectasia": self.telangiectasia,
            "rosaceaIndicators": self.rosacea_indicators,
            "inflammationLevel": self.inflammation_level,
            "affectedAreas": list(self.affected_areas),
        }


@dataclass(frozen=True)
class HydrationMetrics:
    overall_score: int
    moisture_level: float
    sebum_level: float
    skin_type_classification: str  # dry | normal | oily | combination | dehydrated-oily
    barrier_integrity: float
    tewl: str  # normal | elevated | high

    def to_dict(self) -> dict:
        return {
            "overallScore": self.overall_score,
            "moistureLevel": self.moisture_level,
            "sebumLevel": self.sebum_level,
            "skinTypeClassification": self.skin_type_classification,
            "barrier": {"integrity": self.barrier_integrity, "tewl": self.tewl},
        }


@dataclass(frozen=True)
class ElasticityMetrics:
    overall_score: int
    firmness: float
    laxity_level: str  # none | mild | moderate | severe
    collagen_estimate: str  # adequate | declining | depleted
    laxity_areas: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "overallScore": self.overall_score,
            "firmness": self.firmness,
            "laxity": {"level": self.laxity_level, "affectedAreas": list(self.laxity_areas)},
            "collagenEstimate": self.collagen_estimate,
        }


@dataclass(frozen=True)
class DetailedSkinMetrics:
    """The seven aggregated sub-metrics.  Built only by the aggregator."""

    texture: TextureMetrics
    pores: PoreMetrics
    wrinkles: WrinkleMetrics
    pigmentation: PigmentationMetrics
    vascular: VascularMetrics
    hydration: HydrationMetrics
    elasticity: ElasticityMetrics

    def category_scores(self) -> dict[str, int]:
        """``overallScore`` per category, in report order."""
        return {
            "texture": self.texture.overall_score,
            "pores": self.pores.overall_score,
            "wrinkles": self.wrinkles.overall_score,
            "pigmentation": self.pigmentation.overall_score,
            "vascular": self.vascular.overall_score,
            "hydration": self.hydration.overall_score,
            "elasticity": self.elasticity.overall_score,
        }

    def to_dict(self) -> dict:
        return {
            "texture": self.texture.to_dict(),
            "pores": self.pores.to_dict(),
            "wrinkles": self.wrinkles.to_dict(),
            "pigmentation": self.pigmentation.to_dict(),
            "vascular": self.vascular.to_dict(),
            "hydration": self.hydration.to_dict(),
            "elasticity": self.elasticity.to_dict(),
        }


# ---------------------------------------------------------------------------
# Age, concerns, summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgeAnalysis:
    estimated_skin_age: int
    actual_age: int | None
    age_difference: int
    aging_factors: tuple[AgingFactor, ...] = ()

    def to_dict(self) -> dict:
        return {
            "estimatedSkinAge": self.estimated_skin_age,
            "actualAge": self.actual_age,
            "ageDifference": self.age_difference,
            "agingFactors": [f.to_dict() for f in self.aging_factors],
        }


@dataclass(frozen=True)
class Concern:
    """A ranked skin concern.

    Attributes:
        concern:     Canonical condition key (``hidden_uv_damage`` for the
                     synthetic UV concern).
        name:        Display name.
        severity:    Severity band.
        urgency:     Urgency bucket.
        category:    Sub-metric category.
        page_number: Earliest page the concern was seen on.
        confidence:  Detection confidence carried into the plan.
        order:       First-seen position, the final ranking tie-breaker.
    """

    concern: str
    name: str
    severity: Severity
    urgency: Urgency
    category: str
    page_number: int
    confidence: float
    order: int = 0

    def sort_key(self) -> tuple[int, int, int, int]:
        return (-self.severity.rank, -self.urgency.rank, self.page_number, self.order)

    def to_dict(self) -> dict:
        return {
            "concern": self.concern,
            "name": self.name,
            "severity": self.severity.value,
            "urgency": self.urgency.value,
            "category": self.category,
            "pageNumber": self.page_number,
            "confidence": round(self.confidence, 4),
        }


@dataclass(frozen=True)
class Summary:
    overall_skin_health: int
    health_grade: str
    primary_concerns: tuple[Concern, ...] = ()
    strengths: tuple[str, ...] = ()
    areas_for_improvement: tuple[str, ...] = ()
    lifestyle_recommendations: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "overallSkinHealth": self.overall_skin_health,
            "healthGrade": self.health_grade,
            "primaryConcerns": [c.to_dict() for c in self.primary_concerns],
            "strengths": list(self.strengths),
            "areasForImprovement": list(self.areas_for_improvement),
            "lifestyleRecommendations": list(self.lifestyle_recommendations),
        }


# ---------------------------------------------------------------------------
# Treatment plan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CostRange:
    min: int
    max: int
    currency: str = "KRW"

    def __post_init__(self) -> None:
        if self.min < 0 or self.min > self.max:
            raise ValueError(f"Invalid cost range {self.min}–{self.max} {self.currency}")

    def to_dict(self) -> dict:
        return {"min": self.min, "max": self.max, "currency": self.currency}


@dataclass(frozen=True)
class TreatmentRecommendation:
    treatment_id: str
    name: str
    category: TreatmentCategory
    priority: Priority
    confidence: float
    targeted_conditions: tuple[str, ...]
    expected_outcome: str
    sessions: int
    interval: str
    estimated_cost: CostRange
    reasoning: str

    def __post_init__(self) -> None:
        if self.sessions < 1:
            raise ValueError(f"{self.treatment_id}: sessions must be >= 1")

    def to_dict(self) -> dict:
        return {
            "treatmentId": self.treatment_id,
            "name": self.name,
            "category": self.category.value,
            "priority": self.priority.value,
            "confidence": round(self.confidence, 4),
            "targetedConditions": list(self.targeted_conditions),
            "expectedOutcome": self.expected_outcome,
            "sessions": self.sessions,
            "interval": self.interval,
            "estimatedCost": self.estimated_cost.to_dict(),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class TreatmentPlan:
    immediate: tuple[TreatmentRecommendation, ...]
    short_term: tuple[TreatmentRecommendation, ...]
    long_term: tuple[TreatmentRecommendation, ...]
    maintenance: tuple[TreatmentRecommendation, ...]
    total_estimated_investment: CostRange

    def all_recommendations(self) -> tuple[TreatmentRecommendation, ...]:
        return self.immediate + self.short_term + self.long_term + self.maintenance

    def to_dict(self) -> dict:
        return {
            "immediate": [r.to_dict() for r in self.immediate],
            "shortTerm": [r.to_dict() for r in self.short_term],
            "longTerm": [r.to_dict() for r in self.long_term],
            "maintenance": [r.to_dict() for r in self.maintenance],
            "totalEstimatedInvestment": self.total_estimated_investment.to_dict(),
        }


@dataclass(frozen=True)
class AIInsights:
    overall_assessment: str
    customized_protocol: str
    hidden_concerns: tuple[str, ...] = ()
    preventive_advice: tuple[str, ...] = ()
    urgent_attention: tuple[str, ...] = ()
    positive_findings: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "overallAssessment": self.overall_assessment,
            "hiddenConcerns": list(self.hidden_concerns),
            "preventiveAdvice": list(self.preventive_advice),
            "urgentAttention": list(self.urgent_attention),
            "positiveFindings": list(self.positive_findings),
            "customizedProtocol": self.customized_protocol,
        }


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Report:
    """One consolidated analysis of a multi-page skin report."""

    id: str
    analyzed_at: str
    source_file: str
    fingerprint: str
    total_pages: int
    page_analyses: tuple[PageAnalysis, ...]
    detailed_metrics: DetailedSkinMetrics
    age_analysis: AgeAnalysis
    summary: Summary
    treatment_plan: TreatmentPlan
    ai_insights: AIInsights
    skipped_pages: tuple[PageError, ...] = ()
    complete: bool = True
    warnings: tuple[str, ...] = ()
    schema_version: str = "1.0"
    processing_time_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "analyzedAt": self.analyzed_at,
            "sourceFile": self.source_file,
            "fingerprint": self.fingerprint,
            "totalPages": self.total_pages,
            "schemaVersion": self.schema_version,
            "complete": self.complete,
            "processingTimeMs": self.processing_time_ms,
            "pageAnalyses": [p.to_dict() for p in self.page_analyses],
            "skippedPages": [e.to_dict() for e in self.skipped_pages],
            "detailedMetrics": self.detailed_metrics.to_dict(),
            "ageAnalysis": self.age_analysis.to_dict(),
            "summary": self.summary.to_dict(),
            "treatmentPlan": self.treatment_plan.to_dict(),
            "aiInsights": self.ai_insights.to_dict(),
            "warnings": list(self.warnings),
        }
