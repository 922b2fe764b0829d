"""Document intake: validate, fingerprint and render a skin report.

A report arrives as raw bytes plus a declared filename (multipart upload),
as base64 text (JSON API) or as a local path.  All three produce the same
:class:`DocumentHandle`.  The real type is sniffed from magic bytes and must
agree with the filename extension.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import io
import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from cellora.analysis.base import PageImage
from cellora.analysis.errors import InvalidFormatError, TooLargeError
from cellora.analysis.pdf_utils import PDFOpenError, count_pages, ocr_image_bytes, render_pdf_pages

logger = logging.getLogger("cellora.analysis.intake")

DEFAULT_MAX_BYTES = 20 * 1024 * 1024

PDF_MIME = "application/pdf"

_EXTENSION_MIME: dict[str, str] = {
    ".pdf": PDF_MIME,
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


@dataclass(frozen=True)
class DocumentHandle:
    """A validated intake document.

    Attributes:
        filename:    Declared filename.
        mime_type:   Sniffed mime type.
        page_count:  Number of pages (1 for single images).
        fingerprint: SHA-256 hex digest of ``data``.
        data:        The raw document bytes.
    """

    filename: str
    mime_type: str
    page_count: int
    fingerprint: str
    data: bytes

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME


def sniff_mime(data: bytes) -> str | None:
    """Return the mime type implied by the leading magic bytes."""
    if data.startswith(b"%PDF-"):
        return PDF_MIME
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def fingerprint(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def load_document(
    data: bytes,
    filename: str,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    allowed_types: list[str] | None = None,
) -> DocumentHandle:
    """Validate raw bytes and return a :class:`DocumentHandle`.

    Raises:
        InvalidFormatError: Empty, unrecognised, mislabelled, unreadable or
            zero-page documents.
        TooLargeError: Payload over ``max_bytes``.
    """
    if not data:
        raise InvalidFormatError("Document is empty")
    if len(data) > max_bytes:
        raise TooLargeError(
            f"Document is {len(data)} bytes; the limit is {max_bytes} bytes"
        )

    mime_type = sniff_mime(data)
    if mime_type is None:
        raise InvalidFormatError(f"Unrecognised document format: {filename!r}")
    if allowed_types is not None and mime_type not in allowed_types:
        raise InvalidFormatError(f"Document type {mime_type} is not accepted")

    extension = Path(filename).suffix.lower()
    declared = _EXTENSION_MIME.get(extension)
    if extension and declared is None:
        raise InvalidFormatError(f"Unsupported file extension {extension!r}")
    if declared is not None and declared != mime_type:
        raise InvalidFormatError(
            f"{filename!r} is declared as {declared} but contains {mime_type}"
        )

    if mime_type == PDF_MIME:
        try:
            page_count = count_pages(data)
        except PDFOpenError as exc:
            raise InvalidFormatError(str(exc)) from exc
        if page_count == 0:
            raise InvalidFormatError("PDF has zero pages")
    else:
        _open_image(data)
        page_count = 1

    handle = DocumentHandle(
        filename=filename,
        mime_type=mime_type,
        page_count=page_count,
        fingerprint=fingerprint(data),
        data=data,
    )
    logger.info(
        "Accepted %s (%s, %d pages, %d bytes, sha256=%s…)",
        filename,
        mime_type,
        page_count,
        len(data),
        handle.fingerprint[:12],
    )
    return handle


def load_document_from_base64(
    encoded: str,
    filename: str,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    allowed_types: list[str] | None = None,
) -> DocumentHandle:
    """Decode base64 (optionally a ``data:`` URL) and load the document."""
    payload = encoded.strip()
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    # Reject before decoding: base64 inflates by 4/3.
    if len(payload) * 3 // 4 > max_bytes + 3:
        raise TooLargeError(f"Encoded document exceeds the {max_bytes} byte limit")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidFormatError(f"Invalid base64 payload: {exc}") from exc
    return load_document(data, filename, max_bytes=max_bytes, allowed_types=allowed_types)


def load_document_from_path(
    path: str | Path,
    *,
    root: str | Path | None = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    allowed_types: list[str] | None = None,
) -> DocumentHandle:
    """Read a local file and load it.

    With ``root`` set, relative paths are taken from ``root`` and the resolved
    path must stay inside it (symlinks included).
    """
    file_path = Path(path)
    if root is not None:
        base = Path(root).resolve()
        file_path = (base / file_path).resolve()
        if not file_path.is_relative_to(base):
            logger.warning("Refused local intake outside %s: %s", base, path)
            raise InvalidFormatError(f"Path is outside the intake directory: {path}")
    if not file_path.is_file():
        raise InvalidFormatError(f"File not found: {file_path}")
    if file_path.stat().st_size > max_bytes:
        raise TooLargeError(
            f"{file_path.name} is {file_path.stat().st_size} bytes; the limit is {max_bytes} bytes"
        )
    return load_document(
        file_path.read_bytes(),
        file_path.name,
        max_bytes=max_bytes,
        allowed_types=allowed_types,
    )


def render_pages(handle: DocumentHandle, *, dpi: int = 150) -> list[PageImage]:
    """Render a document into one :class:`PageImage` per page.

    PDF pages are rasterised to PNG; single-image documents pass through
    unchanged with OCR text attached.
    """
    if handle.is_pdf:
        rendered = render_pdf_pages(handle.data, dpi=dpi)
        for page in rendered:
            for warning in page.warnings:
                logger.warning("%s: %s", handle.filename, warning)
        return [
            PageImage(
                page_number=page.page_number,
                image_bytes=page.png_bytes,
                mime_type="image/png",
                width=page.width,
                height=page.height,
                text=page.text,
            )
            for page in rendered
        ]

    image = _open_image(handle.data)
    text, warning = ocr_image_bytes(handle.data)
    if warning:
        logger.warning("%s: %s", handle.filename, warning)
    return [
        PageImage(
            page_number=1,
            image_bytes=handle.data,
            mime_type=handle.mime_type,
            width=image.width,
            height=image.height,
            text=text,
        )
    ]


def _open_image(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidFormatError(f"Image could not be decoded: {exc}") from exc
    return image
