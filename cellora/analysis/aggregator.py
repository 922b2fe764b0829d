"""Fold N page analyses into one :class:`DetailedSkinMetrics`.

Pure and deterministic: the same pages in any order produce the same
metrics, and no step depends on wall-clock time or dict iteration order of
external data.

Category scores:
    Each region feeds every category whose keywords appear in its findings
    or recommendations, plus the category of every qualifying condition
    located in it.  A category's ``overallScore`` is

        round(mean(score_i × SEVERITY_WEIGHTS[severity_i]))

    over its contributing regions, clamped to [0, 100].  No contributions →
    NEUTRAL_SCORE.

Qualifying conditions:
    ``confidence >= CONFIDENCE_FLOOR``.  Anything below the floor stays in the
    page analyses but never reaches scoring.
"""

from __future__ import annotations

import logging
import math
from statistics import mean

from cellora.analysis.base import (
    CATEGORIES,
    ConditionDetection,
    ImageType,
    PageAnalysis,
    RegionAnalysis,
    Severity,
    worst_severity,
)
from cellora.analysis.errors import AggregationInvariantViolation, InsufficientDataError
from cellora.analysis.normalizer import categories_for_text, get_display_name
from cellora.analysis.report_models import (
    DetailedSkinMetrics,
    ElasticityMetrics,
    HydrationMetrics,
    PigmentationIssue,
    PigmentationMetrics,
    PoreMetrics,
    RiskLevel,
    TextureMetrics,
    UVDamage,
    VascularMetrics,
    WrinkleMetrics,
    grade_for,
)

logger = logging.getLogger("cellora.analysis.aggregator")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CONFIDENCE_FLOOR = 0.5
NEUTRAL_SCORE = 50

SEVERITY_WEIGHTS: dict[Severity, float] = {
    Severity.NORMAL: 1.0,
    Severity.MILD: 0.85,
    Severity.MODERATE: 0.6,
    Severity.SEVERE: 0.35,
}

# UV hidden-to-visible ratio upper bounds per risk level.
UV_RISK_BANDS: tuple[tuple[RiskLevel, float], ...] = (
    (RiskLevel.LOW, 1.0),
    (RiskLevel.MEDIUM, 1.5),
    (RiskLevel.HIGH, 2.0),
)

# Count metrics are summed across pages.
COUNT_KEYS: tuple[str, ...] = (
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
)

# Level metrics are averaged across the pages that report them.
# Each entry: output name → raw metric keys, first match wins per page.
LEVEL_KEYS: dict[str, tuple[str, ...]] = {
    "moisture": ("moistureLevel",),
    "sebum": ("sebumLevel", "oilLevel"),
    "elasticity": ("elasticityScore", "firmness"),
    "redness": ("rednessLevel",),
    "roughness": ("roughnessIndex",),
    "uniformity": ("uniformityIndex",),
    "evenness": ("evenness",),
    "poreDensity": ("poreDensity",),
}

_LEVEL_NAMES: dict[Severity, str] = {
    Severity.NORMAL: "none",
    Severity.MILD: "mild",
    Severity.MODERATE: "moderate",
    Severity.SEVERE: "severe",
}


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def qualifying_conditions(page: PageAnalysis) -> list[ConditionDetection]:
    """Conditions at or above the confidence floor, in reported order."""
    return [c for c in page.conditions if c.confidence >= CONFIDENCE_FLOOR]


def weighted_category_score(regions: list[RegionAnalysis]) -> int:
    """Severity-weighted mean region score; NEUTRAL_SCORE when empty."""
    if not regions:
        return NEUTRAL_SCORE
    value = mean(r.score * SEVERITY_WEIGHTS[r.severity] for r in regions)
    return max(0, min(100, round(value)))


def uv_hidden_ratio(hidden: int, visible: int) -> float:
    """Hidden-to-visible pigmentation ratio; never divides by zero."""
    return hidden / max(1, visible)


def uv_risk_level(hidden: int, visible: int) -> RiskLevel:
    if hidden <= 0:
        return RiskLevel.LOW
    ratio = uv_hidden_ratio(hidden, visible)
    for level, upper in UV_RISK_BANDS:
        if ratio <= upper:
            return level
    return RiskLevel.CRITICAL


def location_matches(location: str, region: str) -> bool:
    """Loose, case-insensitive match of a condition location to a region name."""
    loc = " ".join(location.lower().split())
    reg = " ".join(region.lower().split())
    if not loc or not reg:
        return False
    return loc == reg or loc in reg or reg in loc


def region_categories(region: RegionAnalysis, page: PageAnalysis) -> list[str]:
    """Every category a region feeds, in report order."""
    found = set(categories_for_text(*region.findings, *region.recommendations))
    for condition in qualifying_conditions(page):
        if condition.category and any(
            location_matches(loc, region.region) for loc in condition.locations
        ):
            found.add(condition.category)
    return [c for c in CATEGORIES if c in found]


def category_regions(pages: list[PageAnalysis]) -> dict[str, list[RegionAnalysis]]:
    """Contributing regions per category, in page then region order."""
    buckets: dict[str, list[RegionAnalysis]] = {c: [] for c in CATEGORIES}
    for page in pages:
        for region in page.regions:
            for category in region_categories(region, page):
                buckets[category].append(region)
    return buckets


def category_scores(pages: list[PageAnalysis]) -> dict[str, int]:
    return {c: weighted_category_score(r) for c, r in category_regions(pages).items()}


def condition_severity(
    condition: ConditionDetection,
    page: PageAnalysis,
    scores: dict[str, int],
) -> Severity:
    """Worst severity among same-page regions named in the condition's
    locations; otherwise the band of its category's score."""
    matched = [
        r.severity
        for r in page.regions
        if any(location_matches(loc, r.region) for loc in condition.locations)
    ]
    worst = worst_severity(matched)
    if worst is not None:
        return worst
    return Severity.for_score(scores.get(condition.category or "", NEUTRAL_SCORE))


def sum_counts(pages: list[PageAnalysis]) -> dict[str, int]:
    totals = {key: 0 for key in COUNT_KEYS}
    for page in pages:
        for key in COUNT_KEYS:
            value = page.numeric_metric(key)
            if value is not None:
                totals[key] += round(value)
    return totals


def average_levels(pages: list[PageAnalysis]) -> dict[str, float | None]:
    levels: dict[str, float | None] = {}
    for name, keys in LEVEL_KEYS.items():
        values = [v for v in (p.numeric_metric(*keys) for p in pages) if v is not None]
        levels[name] = round(mean(values), 1) if values else None
    return levels


def _page_pigment_count(page: PageAnalysis, metric_keys: tuple[str, ...]) -> int:
    reported = page.numeric_metric(*metric_keys)
    if reported is not None:
        return round(reported)
    return sum(
        max(1, len(c.locations))
        for c in qualifying_conditions(page)
        if c.category == "pigmentation"
    )


def pigment_counts(pages: list[PageAnalysis]) -> tuple[int, int]:
    """``(visible, hidden)`` pigmentation counts.

    Visible comes from visible-light pages, hidden from UV pages.  ``other``
    pages contribute to neither.
    """
    visible = hidden = 0
    for page in pages:
        if page.image_type.is_visible_light:
            visible += _page_pigment_count(page, ("pigmentSpots",))
        elif page.image_type is ImageType.UV:
            hidden += _page_pigment_count(page, ("uvSpots", "pigmentSpots"))
    return visible, hidden


def uv_damage(pages: list[PageAnalysis]) -> UVDamage:
    visible, hidden = pigment_counts(pages)
    return UVDamage(
        visible=visible,
        hidden=hidden,
        ratio=uv_hidden_ratio(hidden, visible),
        risk_level=uv_risk_level(hidden, visible),
    )


# ---------------------------------------------------------------------------
# Category detail helpers
# ---------------------------------------------------------------------------


def _ordered_unique(items: list[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for item in items:
        key = item.strip()
        if key and key.lower() not in {s.lower() for s in seen}:
            seen[key] = None
    return tuple(seen)


def _affected_areas(
    category: str,
    pages: list[PageAnalysis],
    regions: list[RegionAnalysis],
) -> tuple[str, ...]:
    """Non-normal contributing regions, then locations of qualifying conditions."""
    areas = [r.region for r in regions if r.severity is not Severity.NORMAL]
    for page in pages:
        for condition in qualifying_conditions(page):
            if condition.category == category:
                areas.extend(condition.locations)
    return _ordered_unique(areas)


def _has_condition(pages: list[PageAnalysis], canonical: str) -> bool:
    return any(c.canonical == canonical for p in pages for c in qualifying_conditions(p))


def _pigmentation_issues(
    pages: list[PageAnalysis],
    scores: dict[str, int],
) -> tuple[PigmentationIssue, ...]:
    all_regions = _ordered_unique([r.region for p in pages for r in p.regions])
    merged: dict[str, tuple[list[str], list[Severity]]] = {}
    for page in pages:
        for condition in qualifying_conditions(page):
            if condition.category != "pigmentation":
                continue
            locations, severities = merged.setdefault(condition.key, ([], []))
            locations.extend(condition.locations)
            severities.append(condition_severity(condition, page, scores))

    issues = []
    for key, (locations, severities) in merged.items():
        unique_locations = _ordered_unique(locations)
        covered = [
            region
            for region in all_regions
            if any(location_matches(loc, region) for loc in unique_locations)
        ]
        coverage = round(100 * len(covered) / len(all_regions), 1) if all_regions else 0.0
        issues.append(
            PigmentationIssue(
                type=key,
                name=get_display_name(key),
                severity=worst_severity(severities) or Severity.MILD,
                coverage=coverage,
                locations=unique_locations,
            )
        )
    return tuple(issues)


def _skin_type(moisture: float, sebum: float) -> str:
    if moisture < 40:
        return "dehydrated-oily" if sebum > 60 else "dry"
    if sebum > 60:
        return "oily"
    if sebum > 50 and moisture < 60:
        return "combination"
    return "normal"


def _tewl(integrity: float) -> str:
    if integrity >= 70:
        return "normal"
    if integrity >= 50:
        return "elevated"
    return "high"


def _collagen(firmness: float) -> str:
    if firmness >= 70:
        return "adequate"
    if firmness >= 50:
        return "declining"
    return "depleted"


def _level(value: float | None, default: float) -> float:
    return value if value is not None else float(default)


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def aggregate(pages: list[PageAnalysis]) -> DetailedSkinMetrics:
    """Build :class:`DetailedSkinMetrics` from successful page analyses.

    Raises:
        InsufficientDataError: No pages.
        AggregationInvariantViolation: A computed value is non-finite or out
            of range.
    """
    if not pages:
        raise InsufficientDataError("No page analyses to aggregate")

    ordered = sorted(pages, key=lambda p: p.page_number)
    regions = category_regions(ordered)
    scores = {c: weighted_category_score(r) for c, r in regions.items()}
    counts = sum_counts(ordered)
    levels = average_levels(ordered)

    texture_regions = regions["texture"]
    texture = TextureMetrics(
        overall_score=scores["texture"],
        roughness_index=_level(levels["roughness"], 100 - scores["texture"]),
        uniformity_index=_level(levels["uniformity"], scores["texture"]),
        smoothness_grade=grade_for(scores["texture"]),
        micro_texture_quality=round(mean(r.score for r in texture_regions), 1)
        if texture_regions
        else float(NEUTRAL_SCORE),
    )

    enlarged, medium, fine = counts["enlargedPores"], counts["mediumPores"], counts["finePores"]
    pores = PoreMetrics(
        overall_score=scores["pores"],
        total_count=counts["poreCount"] or enlarged + medium + fine,
        density=_level(levels["poreDensity"], 0),
        enlarged=enlarged,
        medium=medium,
        fine=fine,
        problem_areas=_affected_areas("pores", ordered, regions["pores"]),
    )

    deep, moderate, fine_w = (
        counts["deepWrinkles"],
        counts["moderateWrinkles"],
        counts["fineWrinkles"],
    )
    wrinkles = WrinkleMetrics(
        overall_score=scores["wrinkles"],
        total_count=counts["wrinkleCount"] or deep + moderate + fine_w,
        deep=deep,
        moderate=moderate,
        fine=fine_w,
        dynamic=counts["dynamicWrinkles"],
        static=counts["staticWrinkles"],
        primary_locations=_affected_areas("wrinkles", ordered, regions["wrinkles"]),
    )

    pigmentation = PigmentationMetrics(
        overall_score=scores["pigmentation"],
        evenness=_level(levels["evenness"], scores["pigmentation"]),
        uv_damage=uv_damage(ordered),
        issues=_pigmentation_issues(ordered, scores),
    )

    vascular = VascularMetrics(
        overall_score=scores["vascular"],
        redness_level=_level(levels["redness"], 100 - scores["vascular"]),
        telangiectasia=_has_condition(ordered, "telangiectasia"),
        rosacea_indicators=_has_condition(ordered, "rosacea"),
        inflammation_level=_LEVEL_NAMES[Severity.for_score(scores["vascular"])],
        affected_areas=_affected_areas("vascular", ordered, regions["vascular"]),
    )

    moisture = _level(levels["moisture"], scores["hydration"])
    sebum = _level(levels["sebum"], NEUTRAL_SCORE)
    integrity = round((moisture + scores["hydration"]) / 2, 1)
    hydration = HydrationMetrics(
        overall_score=scores["hydration"],
        moisture_level=moisture,
        sebum_level=sebum,
        skin_type_classification=_skin_type(moisture, sebum),
        barrier_integrity=integrity,
        tewl=_tewl(integrity),
    )

    firmness = _level(levels["elasticity"], scores["elasticity"])
    elasticity = ElasticityMetrics(
        overall_score=scores["elasticity"],
        firmness=firmness,
        laxity_level=_LEVEL_NAMES[Severity.for_score(scores["elasticity"])],
        collagen_estimate=_collagen(firmness),
        laxity_areas=_affected_areas("elasticity", ordered, regions["elasticity"]),
    )

    metrics = DetailedSkinMetrics(
        texture=texture,
        pores=pores,
        wrinkles=wrinkles,
        pigmentation=pigmentation,
        vascular=vascular,
        hydration=hydration,
        elasticity=elasticity,
    )
    check_invariants(metrics)

    logger.info(
        "Aggregated %d pages: %s (uv ratio %.2f, %s)",
        len(ordered),
        ", ".join(f"{c}={s}" for c, s in scores.items()),
        pigmentation.uv_damage.ratio,
        pigmentation.uv_damage.risk_level.value,
    )
    return metrics


def check_invariants(metrics: DetailedSkinMetrics) -> None:
    """Raise if any score is out of range or any number is non-finite."""
    problems: list[str] = []
    for category, score in metrics.category_scores().items():
        if not isinstance(score, int) or not 0 <= score <= 100:
            problems.append(f"{category}.overallScore={score!r}")

    uv = metrics.pigmentation.uv_damage
    if not math.isfinite(uv.ratio) or uv.ratio < 0:
        problems.append(f"pigmentation.uvDamage.ratio={uv.ratio!r}")
    if uv.visible < 0 or uv.hidden < 0:
        problems.append(f"pigmentation.uvDamage counts {uv.visible}/{uv.hidden}")

    numbers = {
        "texture.roughnessIndex": metrics.texture.roughness_index,
        "texture.uniformityIndex": metrics.texture.uniformity_index,
        "pores.density": metrics.pores.density,
        "pigmentation.evenness": metrics.pigmentation.evenness,
        "vascular.rednessLevel": metrics.vascular.redness_level,
        "hydration.moistureLevel": metrics.hydration.moisture_level,
        "hydration.sebumLevel": metrics.hydration.sebum_level,
        "elasticity.firmness": metrics.elasticity.firmness,
    }
    for name, value in numbers.items():
        if not math.isfinite(value):
            problems.append(f"{name}={value!r}")

    if problems:
        raise AggregationInvariantViolation(
            "Aggregated metrics violate invariants: " + "; ".join(problems)
        )
