"""Treatment planner: concerns → prioritised, bucketed, costed plan.

Priority (from the concern's severity):
    severe → essential, moderate → recommended, mild / normal → optional

Bucket, first rule that matches:
    1. preventive-urgency concern             → maintenance
    2. essential and severe                   → immediate
    3. recommended                            → shortTerm
    4. optional and structural                → longTerm
       (a structural treatment, or a non-preventive treatment for an
       elasticity / wrinkles concern)
    5. otherwise                              → maintenance

A treatment id appears at most once in the plan: the candidate with the
higher confidence wins (ties keep the first seen) and targeted conditions
from every candidate are merged in first-seen order.  Totals are summed
over the de-duplicated plan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from cellora.analysis.base import Severity
from cellora.analysis.catalog import Treatment, TreatmentCatalog
from cellora.analysis.report_models import (
    Concern,
    CostRange,
    Priority,
    TreatmentPlan,
    TreatmentRecommendation,
    Urgency,
)

logger = logging.getLogger("cellora.analysis.planner")

IMMEDIATE = "immediate"
SHORT_TERM = "shortTerm"
LONG_TERM = "longTerm"
MAINTENANCE = "maintenance"

BUCKETS: tuple[str, ...] = (IMMEDIATE, SHORT_TERM, LONG_TERM, MAINTENANCE)

STRUCTURAL_CATEGORIES: frozenset[str] = frozenset({"elasticity", "wrinkles"})

_SEVERITY_PRIORITY: dict[Severity, Priority] = {
    Severity.SEVERE: Priority.ESSENTIAL,
    Severity.MODERATE: Priority.RECOMMENDED,
    Severity.MILD: Priority.OPTIONAL,
    Severity.NORMAL: Priority.OPTIONAL,
}


def priority_for(severity: Severity) -> Priority:
    return _SEVERITY_PRIORITY[severity]


def bucket_for(concern: Concern, priority: Priority, treatment: Treatment) -> str:
    if concern.urgency is Urgency.PREVENTIVE:
        return MAINTENANCE
    if priority is Priority.ESSENTIAL and concern.severity is Severity.SEVERE:
        return IMMEDIATE
    if priority is Priority.RECOMMENDED:
        return SHORT_TERM
    if priority is Priority.OPTIONAL and (
        treatment.structural
        or (concern.category in STRUCTURAL_CATEGORIES and not treatment.preventive)
    ):
        return LONG_TERM
    return MAINTENANCE


@dataclass
class _Candidate:
    bucket: str
    recommendation: TreatmentRecommendation
    order: int
    targets: list[str]


def _reasoning(concern: Concern, priority: Priority, bucket: str) -> str:
    text = (
        f"{concern.name} rated {concern.severity.value} "
        f"(urgency {concern.urgency.value}, confidence {concern.confidence:.0%}); "
        f"{priority.value} treatment scheduled as {bucket}."
    )
    if concern.urgency is Urgency.PREVENTIVE:
        text += " Damage is not yet visible, so treatment is preventive."
    return text


def build_treatment_plan(
    concerns: list[Concern],
    catalog: TreatmentCatalog,
    *,
    currency: str | None = None,
) -> TreatmentPlan:
    """Build the de-duplicated plan from concern occurrences.

    Args:
        concerns: Every concern occurrence in first-seen order, before any
                  de-duplication by concern (not only the top-K shown in
                  the summary).  Ties between candidates for one treatment
                  keep the earlier occurrence.
        catalog:  Treatment catalog.
        currency: Override for the catalog currency.
    """
    currency = currency or catalog.currency
    chosen: dict[str, _Candidate] = {}
    order = 0

    for concern in concerns:
        priority = priority_for(concern.severity)
        for treatment in catalog.treatments_for(concern.concern, concern.category):
            bucket = bucket_for(concern, priority, treatment)
            recommendation = TreatmentRecommendation(
                treatment_id=treatment.treatment_id,
                name=treatment.name,
                category=treatment.category,
                priority=priority,
                confidence=concern.confidence,
                targeted_conditions=(concern.name,),
                expected_outcome=treatment.expected_outcome,
                sessions=treatment.sessions,
                interval=treatment.interval,
                estimated_cost=CostRange(treatment.cost_min, treatment.cost_max, currency),
                reasoning=_reasoning(concern, priority, bucket),
            )
            existing = chosen.get(treatment.treatment_id)
            if existing is None:
                chosen[treatment.treatment_id] = _Candidate(
                    bucket, recommendation, order, [concern.name]
                )
            else:
                if concern.name not in existing.targets:
                    existing.targets.append(concern.name)
                if recommendation.confidence > existing.recommendation.confidence:
                    existing.bucket = bucket
                    existing.recommendation = recommendation
            order += 1

    buckets: dict[str, list[_Candidate]] = {b: [] for b in BUCKETS}
    for candidate in chosen.values():
        buckets[candidate.bucket].append(candidate)

    def _finalise(items: list[_Candidate]) -> tuple[TreatmentRecommendation, ...]:
        items.sort(
            key=lambda c: (
                -c.recommendation.priority.rank,
                -c.recommendation.confidence,
                c.order,
            )
        )
        return tuple(_with_targets(c) for c in items)

    plan_buckets = {b: _finalise(items) for b, items in buckets.items()}
    all_recs = [r for recs in plan_buckets.values() for r in recs]
    total = CostRange(
        sum(r.estimated_cost.min for r in all_recs),
        sum(r.estimated_cost.max for r in all_recs),
        currency,
    )

    logger.info(
        "Treatment plan: %s; total %d–%d %s",
        ", ".join(f"{b}={len(plan_buckets[b])}" for b in BUCKETS),
        total.min,
        total.max,
        currency,
    )
    return TreatmentPlan(
        immediate=plan_buckets[IMMEDIATE],
        short_term=plan_buckets[SHORT_TERM],
        long_term=plan_buckets[LONG_TERM],
        maintenance=plan_buckets[MAINTENANCE],
        total_estimated_investment=total,
    )


def _with_targets(candidate: _Candidate) -> TreatmentRecommendation:
    return replace(candidate.recommendation, targeted_conditions=tuple(candidate.targets))
