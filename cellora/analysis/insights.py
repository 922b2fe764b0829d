"""Deterministic narrative insights built from the aggregated report parts."""

from __future__ import annotations

from cellora.analysis.base import Severity
from cellora.analysis.report_models import (
    AgeAnalysis,
    AIInsights,
    Concern,
    DetailedSkinMetrics,
    RiskLevel,
    Summary,
    TreatmentPlan,
    Urgency,
)
from cellora.analysis.scoring import category_label

_PREVENTIVE_ADVICE: dict[str, str] = {
    "pigmentation": "Daily SPF 50+ and antioxidant serum to keep sub-surface pigment from surfacing.",
    "wrinkles": "Start a night-time retinoid before fine lines become static.",
    "elasticity": "Schedule a collagen-stimulating treatment yearly to slow laxity.",
    "hydration": "Reinforce the barrier with ceramides before dehydration becomes chronic.",
    "vascular": "Keep triggers such as heat and alcohol low to prevent persistent redness.",
    "pores": "Keep sebum in check with regular gentle exfoliation.",
    "texture": "Regular light resurfacing keeps texture from coarsening.",
}


def _age_sentence(age: AgeAnalysis) -> str:
    if age.actual_age is None:
        return f"Estimated skin age is {age.estimated_skin_age}."
    if age.age_difference > 0:
        return (
            f"Skin appears {age.age_difference} years older than the actual age "
            f"of {age.actual_age} (estimated {age.estimated_skin_age})."
        )
    if age.age_difference < 0:
        return (
            f"Skin appears {-age.age_difference} years younger than the actual age "
            f"of {age.actual_age} (estimated {age.estimated_skin_age})."
        )
    return f"Skin age matches the actual age of {age.actual_age}."


def build_insights(
    metrics: DetailedSkinMetrics,
    summary: Summary,
    age: AgeAnalysis,
    concerns: list[Concern],
    plan: TreatmentPlan,
) -> AIInsights:
    """Summarise the report in plain language.

    Same inputs always give the same text.
    """
    scores = metrics.category_scores()
    uv = metrics.pigmentation.uv_damage

    assessment = (
        f"Overall skin health is {summary.overall_skin_health}/100 "
        f"(grade {summary.health_grade}). {_age_sentence(age)}"
    )
    if summary.primary_concerns:
        assessment += " Main concerns: " + ", ".join(
            f"{c.name} ({c.severity.value})" for c in summary.primary_concerns
        ) + "."

    hidden: list[str] = []
    if uv.hidden > 0 and uv.risk_level is not RiskLevel.LOW:
        hidden.append(
            f"UV imaging shows {uv.hidden} pigmented spots against {uv.visible} visible "
            f"ones (ratio {uv.display_ratio:g}, {uv.risk_level.value} risk)."
        )
    hidden.extend(
        f"{c.name} is visible only under UV light."
        for c in concerns
        if c.urgency is Urgency.PREVENTIVE and c.concern != "hidden_uv_damage"
    )

    weak = [c for c, s in scores.items() if s < 70]
    preventive = [_PREVENTIVE_ADVICE[c] for c in weak if c in _PREVENTIVE_ADVICE]
    if uv.ratio > 1.0 and _PREVENTIVE_ADVICE["pigmentation"] not in preventive:
        preventive.insert(0, _PREVENTIVE_ADVICE["pigmentation"])

    urgent = [
        f"{c.name} is severe (page {c.page_number})"
        for c in concerns
        if c.severity is Severity.SEVERE and c.urgency is Urgency.IMMEDIATE
    ]

    positive = [
        f"{category_label(c)} is in good condition ({s}/100)."
        for c, s in scores.items()
        if s >= 80
    ]

    steps = []
    for label, recs in (
        ("Immediately", plan.immediate),
        ("Within 1–3 months", plan.short_term),
        ("Over 3–12 months", plan.long_term),
        ("Ongoing", plan.maintenance),
    ):
        if recs:
            steps.append(f"{label}: " + ", ".join(r.name for r in recs))
    protocol = "; ".join(steps) + "." if steps else "No procedures needed; maintain daily skincare and sun protection."

    return AIInsights(
        overall_assessment=assessment,
        customized_protocol=protocol,
        hidden_concerns=tuple(hidden),
        preventive_advice=tuple(preventive),
        urgent_attention=tuple(urgent),
        positive_findings=tuple(positive),
    )
