"""PDF page utilities.

Page count:   PyMuPDF (fitz), from the document structure without rendering.
Rasterising:  PyMuPDF, each page rendered to PNG in memory.
Text layer:   pdfplumber, accurate for digitally-produced reports.
Fallback:     pytesseract OCR of the rendered page for scanned reports.

Nothing is written to disk.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field

import fitz  # PyMuPDF
import pdfplumber
import pytesseract
from PIL import Image

logger = logging.getLogger("cellora.analysis.pdf_utils")

# Pages with fewer characters than this are treated as image-only.
_MIN_TEXT_CHARS = 20


# ---------------------------------------------------------------------------
# Public types
# ---------------------------------------------------------------------------


@dataclass
class RenderedPage:
    """A single rasterised PDF page."""

    page_number: int
    png_bytes: bytes
    width: int
    height: int
    text: str = ""
    text_method: str = "none"  # "pdfplumber" | "ocr" | "none"
    warnings: list[str] = field(default_factory=list)


class PDFOpenError(Exception):
    """The PDF could not be opened (corrupt, encrypted or not a PDF)."""


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------


def count_pages(file_bytes: bytes) -> int:
    """Return the page count from the document structure.

    Raises:
        PDFOpenError: If the PDF is unreadable or password protected.
    """
    try:
        doc = fitz.open(stream=file_bytes, filetype="pdf")
    except Exception as exc:
        raise PDFOpenError(f"Could not open PDF: {exc}") from exc
    try:
        if doc.needs_pass:
            raise PDFOpenError("PDF is encrypted")
        return doc.page_count
    finally:
        doc.close()


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_pdf_pages(file_bytes: bytes, *, dpi: int = 150) -> list[RenderedPage]:
    """Render every page to PNG and attach its text layer.

    Args:
        file_bytes: Raw PDF bytes.
        dpi:        Render resolution.

    Returns:
        One :class:`RenderedPage` per page, in document order.
    """
    texts = _extract_text_pdfplumber(file_bytes)

    try:
        doc = fitz.open(stream=file_bytes, filetype="pdf")
    except Exception as exc:
        raise PDFOpenError(f"Could not open PDF: {exc}") from exc

    pages: list[RenderedPage] = []
    scale = dpi / 72
    try:
        for i, page in enumerate(doc, start=1):
            pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
            rendered = RenderedPage(
                page_number=i,
                png_bytes=pix.tobytes("png"),
                width=pix.width,
                height=pix.height,
            )
            text = texts[i - 1] if i - 1 < len(texts) else ""
            if len(text.strip()) >= _MIN_TEXT_CHARS:
                rendered.text = text
                rendered.text_method = "pdfplumber"
            else:
                image = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
                ocr_text, warning = _ocr_image(image)
                if warning:
                    rendered.warnings.append(f"Page {i}: {warning}")
                rendered.text = ocr_text or text
                rendered.text_method = "ocr" if ocr_text else ("pdfplumber" if text else "none")
            pages.append(rendered)
    finally:
        doc.close()

    logger.debug(
        "Rendered %d pages at %d dpi (%d via OCR)",
        len(pages),
        dpi,
        sum(1 for p in pages if p.text_method == "ocr"),
    )
    return pages


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------


def _extract_text_pdfplumber(file_bytes: bytes) -> list[str]:
    """Per-page text via pdfplumber; unreadable pages yield ``""``."""
    pages: list[str] = []
    try:
        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            for i, page in enumerate(pdf.pages, start=1):
                try:
                    pages.append(clean_whitespace(page.extract_text(x_tolerance=3, y_tolerance=3) or ""))
                except Exception as exc:
                    logger.warning("pdfplumber failed on page %d: %s", i, exc)
                    pages.append("")
    except Exception as exc:
        logger.warning("pdfplumber could not open PDF: %s", exc)
    return pages


def ocr_image_bytes(image_bytes: bytes) -> tuple[str, str | None]:
    """OCR an encoded image.  Returns ``(text, warning)``."""
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except Exception as exc:
        return "", f"could not decode image for OCR: {exc}"
    return _ocr_image(image.convert("RGB"))


def _ocr_image(image: Image.Image) -> tuple[str, str | None]:
    try:
        text = pytesseract.image_to_string(image, lang="eng", config="--oem 3 --psm 6")
    except pytesseract.TesseractNotFoundError:
        return "", "tesseract binary not installed; OCR skipped"
    except pytesseract.TesseractError as exc:
        return "", f"OCR failed: {exc}"
    return clean_whitespace(text), None


def clean_whitespace(text: str) -> str:
    """Collapse repeated spaces/tabs into single spaces; preserve newlines."""
    lines = []
    for line in text.splitlines():
        lines.append(re.sub(r"[ \t]+", " ", line).strip())
    return "\n".join(line for line in lines if line)
