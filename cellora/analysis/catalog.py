"""Load and validate the treatment catalog.

The catalog lives in ``treatment_catalog.yaml`` alongside this module.  It is
loaded once and cached; ``reload_treatment_catalog()`` re-reads it from disk
and keeps the previous catalog if the new one fails validation.

Usage::

    from cellora.analysis.catalog import get_treatment_catalog

    catalog = get_treatment_catalog()
    catalog.treatments_for("melasma", "pigmentation")   # [Treatment(pico-toning), ...]
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from cellora.analysis.base import CATEGORIES
from cellora.analysis.report_models import TreatmentCategory

logger = logging.getLogger("cellora.analysis.catalog")

_CATALOG_PATH = Path(__file__).parent / "treatment_catalog.yaml"


# ---------------------------------------------------------------------------
# Typed catalog entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Treatment:
    """One catalog treatment.

    Attributes:
        treatment_id:     Stable id (``pico-toning``).
        name:             Display name.
        category:         laser | injectable | device | topical | combination.
        sessions:         Sessions in a full course (>= 1).
        interval:         Human-readable session interval.
        cost_min:         Full-course minimum price.
        cost_max:         Full-course maximum price.
        expected_outcome: What the course is expected to achieve.
        structural:       Targets skin structure; long-term when optional.
        preventive:       Suitable for ongoing maintenance; for an optional
                          concern it goes to maintenance rather than
                          longTerm unless it is also structural.
    """

    treatment_id: str
    name: str
    category: TreatmentCategory
    sessions: int
    interval: str
    cost_min: int
    cost_max: int
    expected_outcome: str = ""
    structural: bool = False
    preventive: bool = False


@dataclass(frozen=True)
class TreatmentCatalog:
    version: str
    currency: str
    treatments: dict[str, Treatment]
    condition_treatments: dict[str, tuple[str, ...]]
    category_treatments: dict[str, tuple[str, ...]]
    max_treatments_per_concern: int = 2

    def treatments_for(self, condition: str, category: str | None = None) -> list[Treatment]:
        """Treatments for a canonical condition, falling back to its category.

        Returns at most ``max_treatments_per_concern`` entries, best first.
        """
        ids = self.condition_treatments.get(condition) or self.category_treatments.get(
            category or "", ()
        )
        return [self.treatments[i] for i in ids[: self.max_treatments_per_concern]]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class CatalogValidationError(ValueError):
    """Raised when treatment_catalog.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Treatment catalog not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise CatalogValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> TreatmentCatalog:
    """Validate the raw YAML dict and construct a :class:`TreatmentCatalog`.

    Collects every problem before raising so one run reports them all.
    """
    errors: list[str] = []

    # ── Treatments ──
    treatments: dict[str, Treatment] = {}
    treatments_raw = raw.get("treatments") or {}
    if not treatments_raw:
        errors.append("'treatments' section is missing or empty")

    for treatment_id, cfg in treatments_raw.items():
        if not isinstance(cfg, dict):
            errors.append(f"treatments.{treatment_id} must be a mapping")
            continue
        where = f"treatments.{treatment_id}"

        try:
            category = TreatmentCategory(cfg.get("category"))
        except ValueError:
            errors.append(f"{where}.category {cfg.get('category')!r} is not a known category")
            continue

        sessions = _as_int(cfg.get("sessions", 1), f"{where}.sessions", errors)
        cost: Any = cfg.get("cost") or {}
        if not isinstance(cost, dict):
            errors.append(f"{where}.cost must be a mapping with min and max")
            continue
        cost_min = _as_int(cost.get("min"), f"{where}.cost.min", errors)
        cost_max = _as_int(cost.get("max"), f"{where}.cost.max", errors)
        if sessions is None or cost_min is None or cost_max is None:
            continue
        if sessions < 1:
            errors.append(f"{where}.sessions must be >= 1, got {sessions}")
        if cost_min < 0 or cost_min > cost_max:
            errors.append(f"{where}.cost must satisfy 0 <= min <= max, got {cost_min}–{cost_max}")

        treatments[treatment_id] = Treatment(
            treatment_id=treatment_id,
            name=str(cfg.get("name") or treatment_id),
            category=category,
            sessions=sessions,
            interval=str(cfg.get("interval", "")),
            cost_min=cost_min,
            cost_max=cost_max,
            expected_outcome=str(cfg.get("expected_outcome", "")),
            structural=bool(cfg.get("structural", False)),
            preventive=bool(cfg.get("preventive", False)),
        )

    # ── Mappings ──
    condition_treatments = _mapping(raw, "condition_treatments", treatments_raw, errors)
    category_treatments = _mapping(raw, "category_treatments", treatments_raw, errors)
    for category in category_treatments:
        if category not in CATEGORIES:
            errors.append(f"category_treatments.{category} is not a skin metric category")

    limit = _as_int(raw.get("max_treatments_per_concern", 2), "max_treatments_per_concern", errors)
    if limit is not None and limit < 1:
        errors.append("max_treatments_per_concern must be >= 1")

    if errors:
        raise CatalogValidationError(
            f"treatment_catalog.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return TreatmentCatalog(
        version=str(raw.get("version", "1.0")),
        currency=str(raw.get("currency", "KRW")),
        treatments=treatments,
        condition_treatments=condition_treatments,
        category_treatments=category_treatments,
        max_treatments_per_concern=limit or 2,
    )


def _as_int(value: Any, where: str, errors: list[str]) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"{where} must be an integer, got {value!r}")
        return None
    return value


def _mapping(
    raw: dict,
    section: str,
    treatments_raw: dict,
    errors: list[str],
) -> dict[str, tuple[str, ...]]:
    result: dict[str, tuple[str, ...]] = {}
    for key, ids in (raw.get(section) or {}).items():
        if not isinstance(ids, list) or not ids:
            errors.append(f"{section}.{key} must be a non-empty list of treatment ids")
            continue
        unknown = [i for i in ids if i not in treatments_raw]
        if unknown:
            errors.append(f"{section}.{key} references unknown treatments {unknown}")
            continue
        result[key] = tuple(ids)
    return result


def load_treatment_catalog(path: Path | None = None) -> TreatmentCatalog:
    """Load and validate the catalog from disk (bundled YAML by default)."""
    target = path or _CATALOG_PATH
    catalog = _validate_and_build(_load_yaml(target))
    logger.info(
        "Loaded treatment catalog v%s from %s (%d treatments)",
        catalog.version,
        target,
        len(catalog.treatments),
    )
    return catalog


# ---------------------------------------------------------------------------
# Global singleton with reload support
# ---------------------------------------------------------------------------

_catalog: TreatmentCatalog | None = None
_catalog_lock = threading.Lock()


def get_treatment_catalog() -> TreatmentCatalog:
    """Return the cached catalog, loading it on first call.  Thread-safe."""
    global _catalog
    if _catalog is None:
        with _catalog_lock:
            if _catalog is None:  # double-checked locking
                _catalog = load_treatment_catalog()
    return _catalog


def reload_treatment_catalog(path: Path | None = None) -> TreatmentCatalog:
    """Re-read the catalog and replace the cached one.

    If validation fails the previous catalog is kept and the error re-raised.
    """
    global _catalog
    new_catalog = load_treatment_catalog(path)  # validate before acquiring lock
    with _catalog_lock:
        old_version = _catalog.version if _catalog else "none"
        _catalog = new_catalog
    logger.info("Reloaded treatment catalog: %s → %s", old_version, new_catalog.version)
    return new_catalog
