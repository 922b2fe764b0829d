"""Canonical skin-condition name normalisation and category mapping.

The extraction service names conditions freely ("Melasma (mixed type)",
"sun damage spots", "crow's feet").  Before aggregation every name is
resolved to a canonical snake_case key, and every canonical key belongs to
exactly one of the seven ``DetailedSkinMetrics`` categories.

Matching is case-insensitive: exact alias lookup first, then substring, then
fuzzy matching with ``rapidfuzz`` at an 85 % threshold.
"""

from __future__ import annotations

import logging

from rapidfuzz import fuzz, process as rfprocess

logger = logging.getLogger("cellora.analysis.normalizer")

# ---------------------------------------------------------------------------
# Condition alias dictionary
# Each entry: canonical_name → list[alias_strings] (lowercase).
# ---------------------------------------------------------------------------

CONDITION_ALIASES: dict[str, list[str]] = {
    # ── Pigmentation ─────────────────────────────────────────────────────────
    "melasma": ["melasma", "chloasma", "mask of pregnancy"],
    "freckles": ["freckles", "freckle", "ephelides"],
    "sun_spots": [
        "sun spots", "sunspots", "sun spot", "solar lentigines", "lentigines",
        "lentigo", "age spots", "liver spots", "brown spots",
    ],
    "uv_damage": [
        "uv damage", "uv spots", "hidden uv damage", "sun damage",
        "photodamage", "photo damage", "subsurface pigmentation",
    ],
    "hyperpigmentation": [
        "hyperpigmentation", "pigmentation", "dark spots", "pigment spots",
        "post-inflammatory hyperpigmentation", "pih",
    ],
    "uneven_tone": ["uneven skin tone", "uneven tone", "dyschromia", "blotchiness"],
    # ── Vascular ─────────────────────────────────────────────────────────────
    "rosacea": ["rosacea", "acne rosacea"],
    "telangiectasia": [
        "telangiectasia", "telangiectasias", "spider veins",
        "broken capillaries", "dilated capillaries",
    ],
    "redness": ["redness", "erythema", "flushing", "red areas", "red spots"],
    "sensitive_skin": ["sensitive skin", "sensitive/reactive skin", "reactive skin"],
    # ── Pores ────────────────────────────────────────────────────────────────
    "enlarged_pores": [
        "enlarged pores", "large pores", "pore enlargement", "dilated pores",
        "visible pores",
    ],
    "blackheads": ["blackheads", "comedones", "open comedones", "clogged pores"],
    # ── Wrinkles ─────────────────────────────────────────────────────────────
    "fine_lines": ["fine lines", "fine wrinkles", "crow's feet", "crows feet"],
    "deep_wrinkles": [
        "deep wrinkles", "wrinkles", "static wrinkles", "forehead lines",
        "glabellar lines", "frown lines", "nasolabial folds",
    ],
    # ── Texture ──────────────────────────────────────────────────────────────
    "acne_scars": ["acne scars", "acne scarring", "atrophic scars", "pitted scars"],
    "active_acne": ["active acne", "acne", "acne vulgaris", "breakouts", "papules"],
    "texture_irregularity": [
        "texture irregularity", "rough texture", "uneven texture", "roughness",
    ],
    "dullness": ["dullness", "dull skin", "lack of radiance"],
    # ── Hydration ────────────────────────────────────────────────────────────
    "dehydration": ["dehydration", "dehydrated skin", "dryness", "dry skin", "low moisture"],
    "seborrhea": ["seborrhea", "excess sebum", "oily skin", "oiliness", "excess oil"],
    # ── Elasticity ───────────────────────────────────────────────────────────
    "sagging": ["sagging", "skin sagging", "jowls", "ptosis", "laxity", "skin laxity"],
    "loss_of_elasticity": [
        "loss of elasticity", "reduced elasticity", "loss of firmness",
        "collagen loss",
    ],
    "under_eye_circles": ["under-eye circles", "dark circles", "undereye circles"],
}

#: Fixed category for every canonical condition.
CONDITION_CATEGORY: dict[str, str] = {
    "melasma": "pigmentation",
    "freckles": "pigmentation",
    "sun_spots": "pigmentation",
    "uv_damage": "pigmentation",
    "hyperpigmentation": "pigmentation",
    "uneven_tone": "pigmentation",
    "rosacea": "vascular",
    "telangiectasia": "vascular",
    "redness": "vascular",
    "sensitive_skin": "vascular",
    "enlarged_pores": "pores",
    "blackheads": "pores",
    "fine_lines": "wrinkles",
    "deep_wrinkles": "wrinkles",
    "acne_scars": "texture",
    "active_acne": "texture",
    "texture_irregularity": "texture",
    "dullness": "texture",
    "dehydration": "hydration",
    "seborrhea": "hydration",
    "sagging": "elasticity",
    "loss_of_elasticity": "elasticity",
    "under_eye_circles": "elasticity",
}

_DISPLAY_NAMES: dict[str, str] = {
    "melasma": "Melasma",
    "freckles": "Freckles",
    "sun_spots": "Sun Spots",
    "uv_damage": "UV Damage",
    "hyperpigmentation": "Hyperpigmentation",
    "uneven_tone": "Uneven Skin Tone",
    "rosacea": "Rosacea",
    "telangiectasia": "Telangiectasia",
    "redness": "Redness",
    "sensitive_skin": "Sensitive/Reactive Skin",
    "enlarged_pores": "Enlarged Pores",
    "blackheads": "Blackheads",
    "fine_lines": "Fine Lines",
    "deep_wrinkles": "Deep Wrinkles",
    "acne_scars": "Acne Scars",
    "active_acne": "Active Acne",
    "texture_irregularity": "Texture Irregularity",
    "dullness": "Dullness",
    "dehydration": "Dehydration",
    "seborrhea": "Seborrhea",
    "sagging": "Skin Sagging",
    "loss_of_elasticity": "Loss of Elasticity",
    "under_eye_circles": "Under-eye Circles",
    "hidden_uv_damage": "Hidden UV Damage",
}

# ---------------------------------------------------------------------------
# Region finding keywords → categories
# Order matters only for presentation; a region may feed several categories.
# ---------------------------------------------------------------------------

CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("texture", ("texture", "rough", "smooth", "scar", "dull", "acne")),
    ("pores", ("pore", "comedo", "blackhead")),
    ("wrinkles", ("wrinkle", "fine line", "crow", "furrow", "fold", "creas")),
    (
        "pigmentation",
        ("pigment", "melasma", "freckle", "spot", "lentig", "uv damage", "skin tone", "uneven tone", "brown"),
    ),
    (
        "vascular",
        ("redness", "red area", "erythema", "rosacea", "telangiect", "vascular", "capillar", "inflam", "flush"),
    ),
    ("hydration", ("hydrat", "moist", "dry", "sebum", "oil", "barrier")),
    ("elasticity", ("sagging", "laxity", "elastic", "firm", "jowl", "collagen", "lift")),
)

# Build a flat alias → canonical lookup
_ALIAS_TO_CANONICAL: dict[str, str] = {}
for _canonical, _aliases in CONDITION_ALIASES.items():
    _ALIAS_TO_CANONICAL[_canonical.replace("_", " ")] = _canonical
    for _alias in _aliases:
        _ALIAS_TO_CANONICAL[_alias.lower()] = _canonical

_ALL_ALIASES: list[str] = list(_ALIAS_TO_CANONICAL.keys())

_FUZZY_THRESHOLD = 85  # minimum similarity score (0–100) for a match


def normalize_condition_name(
    raw_name: str,
    *,
    fuzzy_threshold: int = _FUZZY_THRESHOLD,
) -> tuple[str | None, float]:
    """Resolve a raw condition name to its canonical key.

    Args:
        raw_name:        Name as reported by the extraction service.
        fuzzy_threshold: Minimum rapidfuzz score (0–100) to accept a match.

    Returns:
        ``(canonical_name, match_score)`` where ``match_score`` is 0.0–1.0.
        Returns ``(None, 0.0)`` if no acceptable match is found.
    """
    if not raw_name or not raw_name.strip():
        return None, 0.0

    key = " ".join(raw_name.strip().lower().replace("_", " ").split())

    # 1. Exact match
    if key in _ALIAS_TO_CANONICAL:
        return _ALIAS_TO_CANONICAL[key], 1.0

    # 2. Substring match, longest alias first so "deep wrinkles" beats "wrinkles"
    for alias in sorted(_ALL_ALIASES, key=len, reverse=True):
        if len(alias) >= 4 and alias in key:
            return _ALIAS_TO_CANONICAL[alias], 0.92

    # 3. Fuzzy match
    result = rfprocess.extractOne(
        key,
        _ALL_ALIASES,
        scorer=fuzz.WRatio,
        score_cutoff=fuzzy_threshold,
    )
    if result is not None:
        matched_alias, score, _ = result
        canonical = _ALIAS_TO_CANONICAL[matched_alias]
        logger.debug(
            "Fuzzy match: %r → %r (alias=%r, score=%.1f)",
            raw_name,
            canonical,
            matched_alias,
            score,
        )
        return canonical, score / 100.0

    logger.debug("No match for condition name: %r", raw_name)
    return None, 0.0


def category_for_condition(canonical: str | None, raw_name: str = "") -> str | None:
    """Return the sub-metric category for a condition.

    Unknown conditions fall back to keyword matching on the raw name.
    """
    if canonical and canonical in CONDITION_CATEGORY:
        return CONDITION_CATEGORY[canonical]
    categories = categories_for_text(raw_name)
    return categories[0] if categories else None


def categories_for_text(*texts: str) -> list[str]:
    """Return every category whose keywords appear in any of ``texts``."""
    haystack = " ".join(t.lower() for t in texts if t)
    if not haystack:
        return []
    return [
        category
        for category, keywords in CATEGORY_KEYWORDS
        if any(kw in haystack for kw in keywords)
    ]


def get_display_name(canonical_name: str) -> str:
    """Return a human-friendly display name for a canonical condition."""
    return _DISPLAY_NAMES.get(canonical_name, canonical_name.replace("_", " ").title())
