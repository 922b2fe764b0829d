"""Overall score, health grade, concern ranking and skin-age estimate.

Overall health:
    round(Σ w_c · score_c / Σ w_c) over the seven categories, clamped to
    [0, 100].  Weights are equal (1/7 each).

Grade (monotone in the score):
    A ≥ 90, B ≥ 80, C ≥ 60, D ≥ 40, F below.

Concerns:
    Every qualifying condition, every non-normal region that no qualifying
    condition on its page is located in, and hidden UV damage when the
    hidden-to-visible ratio exceeds 1.  Region concerns carry confidence
    REGION_CONFIDENCE.  A UV-page region filed under pigmentation is
    folded into the hidden UV concern when that exists, and is preventive
    otherwise.

Concern ranking key:
    (severity desc, urgency desc, page number asc, first-seen asc), with
    urgency ranks immediate 3 > soon 2 > preventive 1 > routine 0.

Skin age:
    base + Σ aging-factor years + (70 − overall health) / 10, rounded,
    minimum 1.  Base is the actual age when known, otherwise the median
    page ``apparentAge``, otherwise DEFAULT_BASE_AGE.
"""

from __future__ import annotations

import logging
from statistics import median

from cellora.analysis.aggregator import (
    CONFIDENCE_FLOOR,
    category_scores,
    condition_severity,
    location_matches,
    qualifying_conditions,
)
from cellora.analysis.base import (
    CATEGORIES,
    AgingFactor,
    Contribution,
    ImageType,
    PageAnalysis,
    RegionAnalysis,
    Severity,
)
from cellora.analysis.normalizer import categories_for_text, get_display_name
from cellora.analysis.report_models import (
    AgeAnalysis,
    Concern,
    DetailedSkinMetrics,
    RiskLevel,
    Summary,
    Urgency,
    grade_for,
)

logger = logging.getLogger("cellora.analysis.scoring")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CATEGORY_WEIGHTS: dict[str, float] = {c: 1 / 7 for c in CATEGORIES}

HIDDEN_UV_CONCERN = "hidden_uv_damage"

# Region scores are measurements, not detections.
REGION_CONFIDENCE = 1.0

DEFAULT_BASE_AGE = 35
HEALTH_PIVOT = 70
HEALTH_YEARS_PER_POINT = 0.1

CONTRIBUTION_YEARS: dict[Contribution, float] = {
    Contribution.LOW: 0.5,
    Contribution.MEDIUM: 1.5,
    Contribution.HIGH: 3.0,
}

_CONTRIBUTION_RANK: dict[Contribution, int] = {
    Contribution.LOW: 0,
    Contribution.MEDIUM: 1,
    Contribution.HIGH: 2,
}

_SEVERITY_URGENCY: dict[Severity, Urgency] = {
    Severity.SEVERE: Urgency.IMMEDIATE,
    Severity.MODERATE: Urgency.SOON,
    Severity.MILD: Urgency.ROUTINE,
    Severity.NORMAL: Urgency.ROUTINE,
}

_UV_RISK_SEVERITY: dict[RiskLevel, Severity] = {
    RiskLevel.LOW: Severity.NORMAL,
    RiskLevel.MEDIUM: Severity.MILD,
    RiskLevel.HIGH: Severity.MODERATE,
    RiskLevel.CRITICAL: Severity.SEVERE,
}

STRENGTH_THRESHOLD = 80
IMPROVEMENT_THRESHOLD = 60

LIFESTYLE_ADVICE: dict[str, str] = {
    "texture": "Exfoliate gently once or twice a week and avoid harsh scrubs.",
    "pores": "Double-cleanse in the evening and use a non-comedogenic moisturiser.",
    "wrinkles": "Use a retinoid at night and sleep 7–8 hours.",
    "pigmentation": "Apply broad-spectrum SPF 50+ daily and reapply every 2–3 hours outdoors.",
    "vascular": "Avoid hot showers, alcohol and spicy food that trigger flushing.",
    "hydration": "Drink enough water and use a ceramide-based barrier cream.",
    "elasticity": "Eat enough protein and vitamin C and avoid smoking.",
}

_CATEGORY_LABELS: dict[str, str] = {
    "texture": "Skin texture",
    "pores": "Pores",
    "wrinkles": "Wrinkles",
    "pigmentation": "Pigmentation",
    "vascular": "Redness and vascular health",
    "hydration": "Hydration and oil balance",
    "elasticity": "Elasticity and firmness",
}


# ---------------------------------------------------------------------------
# Overall score
# ---------------------------------------------------------------------------


def overall_skin_health(metrics: DetailedSkinMetrics) -> int:
    scores = metrics.category_scores()
    total_weight = sum(CATEGORY_WEIGHTS.values())
    value = sum(CATEGORY_WEIGHTS[c] * scores[c] for c in CATEGORIES) / total_weight
    return max(0, min(100, round(value)))


def category_label(category: str) -> str:
    return _CATEGORY_LABELS.get(category, category.title())


# ---------------------------------------------------------------------------
# Concerns
# ---------------------------------------------------------------------------


def _uv_only_keys(pages: list[PageAnalysis]) -> set[str]:
    """Pigmentation condition keys that appear on UV pages and nowhere else."""
    seen_on: dict[str, set[ImageType]] = {}
    for page in pages:
        for condition in qualifying_conditions(page):
            if condition.category == "pigmentation":
                seen_on.setdefault(condition.key, set()).add(page.image_type)
    return {key for key, types in seen_on.items() if types == {ImageType.UV}}


def _region_covered(region: RegionAnalysis, page: PageAnalysis) -> bool:
    return any(
        location_matches(loc, region.region)
        for condition in qualifying_conditions(page)
        for loc in condition.locations
    )


def region_category(region: RegionAnalysis) -> str:
    """First category (report order) named by a region's text, else ``other``."""
    found = categories_for_text(*region.findings, *region.recommendations)
    return found[0] if found else "other"


def region_concern_key(region: RegionAnalysis, category: str) -> str:
    slug = "_".join(region.region.lower().split())
    return f"{slug}_{category}"


def collect_concerns(pages: list[PageAnalysis], metrics: DetailedSkinMetrics) -> list[Concern]:
    """Every concern occurrence in page order, not yet de-duplicated."""
    ordered = sorted(pages, key=lambda p: p.page_number)
    scores = category_scores(ordered)
    uv_only = _uv_only_keys(ordered)
    hidden_uv = metrics.pigmentation.uv_damage.ratio > 1.0

    concerns: list[Concern] = []
    for page in ordered:
        for condition in qualifying_conditions(page):
            severity = condition_severity(condition, page, scores)
            urgency = (
                Urgency.PREVENTIVE
                if condition.key in uv_only
                else _SEVERITY_URGENCY[severity]
            )
            concerns.append(
                Concern(
                    concern=condition.key,
                    name=get_display_name(condition.key),
                    severity=severity,
                    urgency=urgency,
                    category=condition.category or "other",
                    page_number=page.page_number,
                    confidence=condition.confidence,
                    order=len(concerns),
                )
            )

        for region in page.regions:
            if region.severity is Severity.NORMAL or _region_covered(region, page):
                continue
            category = region_category(region)
            uv_pigment = page.image_type is ImageType.UV and category == "pigmentation"
            if uv_pigment and hidden_uv:
                continue
            concerns.append(
                Concern(
                    concern=region_concern_key(region, category),
                    name=f"{region.region.strip().title()} ({category_label(category).lower()})",
                    severity=region.severity,
                    urgency=Urgency.PREVENTIVE if uv_pigment else _SEVERITY_URGENCY[region.severity],
                    category=category,
                    page_number=page.page_number,
                    confidence=REGION_CONFIDENCE,
                    order=len(concerns),
                )
            )

    uv = metrics.pigmentation.uv_damage
    if hidden_uv:
        uv_pages = [p for p in ordered if p.image_type is ImageType.UV]
        uv_confidences = [
            c.confidence
            for p in uv_pages
            for c in qualifying_conditions(p)
            if c.category == "pigmentation"
        ]
        concerns.append(
            Concern(
                concern=HIDDEN_UV_CONCERN,
                name=get_display_name(HIDDEN_UV_CONCERN),
                severity=_UV_RISK_SEVERITY[uv.risk_level],
                urgency=Urgency.PREVENTIVE,
                category="pigmentation",
                page_number=uv_pages[0].page_number if uv_pages else ordered[0].page_number,
                confidence=max(uv_confidences) if uv_confidences else 1.0,
                order=len(concerns),
            )
        )
    return concerns


def rank_concerns(concerns: list[Concern]) -> list[Concern]:
    """Sort by the ranking key and keep the best entry per concern key."""
    ranked: list[Concern] = []
    seen: set[str] = set()
    for concern in sorted(concerns, key=Concern.sort_key):
        if concern.concern in seen:
            continue
        seen.add(concern.concern)
        ranked.append(concern)
    return ranked


# ---------------------------------------------------------------------------
# Age
# ---------------------------------------------------------------------------


def merge_aging_factors(pages: list[PageAnalysis]) -> tuple[AgingFactor, ...]:
    """De-duplicate factors by name, keeping the strongest contribution."""
    merged: dict[str, AgingFactor] = {}
    for page in sorted(pages, key=lambda p: p.page_number):
        for factor in page.aging_factors:
            key = factor.factor.strip().lower()
            current = merged.get(key)
            if current is None or (
                _CONTRIBUTION_RANK[factor.contribution] > _CONTRIBUTION_RANK[current.contribution]
            ):
                merged[key] = factor
    return tuple(merged.values())


def estimate_age(
    pages: list[PageAnalysis],
    overall_health: int,
    actual_age: int | None = None,
) -> AgeAnalysis:
    factors = merge_aging_factors(pages)

    if actual_age is not None:
        base: float = actual_age
    else:
        apparent = [p.apparent_age for p in pages if p.apparent_age is not None]
        base = median(apparent) if apparent else DEFAULT_BASE_AGE

    years = sum(CONTRIBUTION_YEARS[f.contribution] for f in factors)
    years += (HEALTH_PIVOT - overall_health) * HEALTH_YEARS_PER_POINT
    estimated = max(1, round(base + years))

    return AgeAnalysis(
        estimated_skin_age=estimated,
        actual_age=actual_age,
        age_difference=estimated - actual_age if actual_age is not None else 0,
        aging_factors=factors,
    )


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


def summarize(
    metrics: DetailedSkinMetrics,
    ranked_concerns: list[Concern],
    *,
    concern_limit: int = 3,
) -> Summary:
    health = overall_skin_health(metrics)
    scores = metrics.category_scores()

    strengths = [
        f"{category_label(c)} ({s}/100)" for c, s in scores.items() if s >= STRENGTH_THRESHOLD
    ]
    weak = [c for c, s in sorted(scores.items(), key=lambda kv: kv[1]) if s < IMPROVEMENT_THRESHOLD]
    improvements = [f"{category_label(c)} ({scores[c]}/100)" for c in weak]
    lifestyle = [LIFESTYLE_ADVICE[c] for c in weak]
    if metrics.pigmentation.uv_damage.ratio > 1.0 and LIFESTYLE_ADVICE["pigmentation"] not in lifestyle:
        lifestyle.append(LIFESTYLE_ADVICE["pigmentation"])

    logger.debug(
        "Summary: health=%d grade=%s concerns=%d (floor %.2f)",
        health,
        grade_for(health),
        len(ranked_concerns),
        CONFIDENCE_FLOOR,
    )
    return Summary(
        overall_skin_health=health,
        health_grade=grade_for(health),
        primary_concerns=tuple(ranked_concerns[:concern_limit]),
        strengths=tuple(strengths),
        areas_for_improvement=tuple(improvements),
        lifestyle_recommendations=tuple(lifestyle),
    )
