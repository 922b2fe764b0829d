"""Page modality classifier.

Decides whether a page was captured under standard light, UV, one of the
polarised modes, or an enhanced (algorithmically filtered) view.  Runs
before extraction and never depends on it.

Two cue sources:
  * text cues from the page's text layer / OCR output (keyword table, most
    specific pattern first)
  * a visual cue from Pillow ``ImageStat``: UV photographs are dark frames
    dominated by the blue/violet channel

A page with no cue, or with conflicting cues of equal strength, is
classified ``other`` and flagged ambiguous.
"""

from __future__ import annotations

import io
import logging
import re
from collections import Counter

from PIL import Image, ImageStat, UnidentifiedImageError

from cellora.analysis.base import ImageType, PageClassification, PageImage
from cellora.analysis.errors import ClassificationAmbiguous

logger = logging.getLogger("cellora.analysis.classifier")

# ---------------------------------------------------------------------------
# Text cue table, most specific first
# ---------------------------------------------------------------------------

_TEXT_CUES: tuple[tuple[ImageType, re.Pattern[str]], ...] = (
    (ImageType.CROSS_POLARIZED, re.compile(r"\bcross[- ]?polari[sz]ed\b|\bxpl\b", re.IGNORECASE)),
    (ImageType.PARALLEL_POLARIZED, re.compile(r"\bparallel[- ]?polari[sz]ed\b|\bppl\b", re.IGNORECASE)),
    (
        ImageType.POLARIZED,
        re.compile(
            r"(?<!cross-)(?<!cross )(?<!parallel-)(?<!parallel )\bpolari[sz]ed\b",
            re.IGNORECASE,
        ),
    ),
    (ImageType.UV, re.compile(r"\bultra[- ]?violet\b|\buv\b|\bwood'?s lamp\b", re.IGNORECASE)),
    (
        ImageType.ENHANCED,
        re.compile(
            r"\benhanced\b|\bbrown spots? view\b|\bred areas? view\b|\brbx\b",
            re.IGNORECASE,
        ),
    ),
    (
        ImageType.STANDARD,
        re.compile(r"\bstandard( light)?\b|\bnormal light\b|\bwhite light\b|\bdaylight\b", re.IGNORECASE),
    ),
)

# Visual UV cue thresholds (0–255 channel means).
_UV_MAX_BRIGHTNESS = 90.0
_UV_BLUE_OVER_RED = 1.25
_UV_BLUE_OVER_GREEN = 1.1

# Confidence for each verdict shape.
_CONF_AGREEING = 0.95
_CONF_SINGLE_CUE = 0.85
_CONF_MAJORITY = 0.7
_CONF_VISUAL_ONLY = 0.6


def text_cues(text: str) -> Counter[ImageType]:
    """Count keyword hits per modality in ``text``."""
    hits: Counter[ImageType] = Counter()
    if not text:
        return hits
    for image_type, pattern in _TEXT_CUES:
        found = len(pattern.findall(text))
        if found:
            hits[image_type] += found
    return hits


def has_uv_visual_cue(image_bytes: bytes) -> bool:
    """True when the frame is dark and blue/violet dominant."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            stat = ImageStat.Stat(img.convert("RGB"))
    except (UnidentifiedImageError, OSError) as exc:
        logger.debug("Visual cue skipped, image unreadable: %s", exc)
        return False
    red, green, blue = stat.mean[:3]
    brightness = (red + green + blue) / 3
    return (
        brightness < _UV_MAX_BRIGHTNESS
        and blue > red * _UV_BLUE_OVER_RED
        and blue > green * _UV_BLUE_OVER_GREEN
    )


def classify_page(page: PageImage) -> PageClassification:
    """Classify one page from its text layer and pixel statistics."""
    hits = text_cues(page.text)
    visual_uv = has_uv_visual_cue(page.image_bytes)

    cues = [f"text:{t.value}x{n}" for t, n in hits.items()]
    if visual_uv:
        cues.append("visual:uv")

    if not hits:
        if visual_uv:
            return PageClassification(
                page_number=page.page_number,
                image_type=ImageType.UV,
                confidence=_CONF_VISUAL_ONLY,
                cues=tuple(cues),
            )
        return _ambiguous(page.page_number, cues)

    ranked = hits.most_common()
    best_type, best_count = ranked[0]
    runner_up = ranked[1][1] if len(ranked) > 1 else 0

    if visual_uv:
        if best_type is ImageType.UV or hits[ImageType.UV] + 1 > best_count:
            return PageClassification(
                page_number=page.page_number,
                image_type=ImageType.UV,
                confidence=_CONF_AGREEING if best_type is ImageType.UV and runner_up == 0 else _CONF_MAJORITY,
                cues=tuple(cues),
            )
        if hits[ImageType.UV] + 1 == best_count:
            return _ambiguous(page.page_number, cues)

    if best_count == runner_up:
        return _ambiguous(page.page_number, cues)

    return PageClassification(
        page_number=page.page_number,
        image_type=best_type,
        confidence=_CONF_SINGLE_CUE if runner_up == 0 else _CONF_MAJORITY,
        cues=tuple(cues),
    )


def classify_pages(
    pages: list[PageImage],
) -> tuple[list[PageClassification], list[str]]:
    """Classify every page.  Returns ``(classifications, warnings)``."""
    classifications: list[PageClassification] = []
    warnings: list[str] = []
    for page in pages:
        result = classify_page(page)
        if result.ambiguous:
            issue = ClassificationAmbiguous(
                f"Page {page.page_number}: no decisive modality cue "
                f"({', '.join(result.cues) or 'no cues'})",
                page_number=page.page_number,
            )
            logger.warning("%s", issue.message)
            warnings.append(f"{issue.kind.value}: {issue.message}")
        classifications.append(result)
    return classifications, warnings


def resolve_image_type(
    classification: PageClassification | None,
    reported: ImageType,
) -> ImageType:
    """Final page modality: the classifier's verdict unless it was ambiguous."""
    if classification is not None and not classification.ambiguous:
        return classification.image_type
    return reported


def _ambiguous(page_number: int, cues: list[str]) -> PageClassification:
    return PageClassification(
        page_number=page_number,
        image_type=ImageType.OTHER,
        confidence=0.0,
        cues=tuple(cues),
        ambiguous=True,
    )
