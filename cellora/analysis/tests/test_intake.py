"""Tests for document intake: sniffing, validation, fingerprinting, rendering."""

from __future__ import annotations

import base64

import pytest

from cellora.analysis.errors import ErrorKind, InvalidFormatError, TooLargeError
from cellora.analysis.intake import (
    PDF_MIME,
    fingerprint,
    load_document,
    load_document_from_base64,
    load_document_from_path,
    render_pages,
    sniff_mime,
)
from cellora.analysis.tests.conftest import make_jpeg, make_pdf, make_png


# ---------------------------------------------------------------------------
# Magic bytes
# ---------------------------------------------------------------------------


class TestSniffMime:
    def test_pdf(self) -> None:
        assert sniff_mime(make_pdf(["Standard light"])) == PDF_MIME

    def test_png(self) -> None:
        assert sniff_mime(make_png()) == "image/png"

    def test_jpeg(self) -> None:
        assert sniff_mime(make_jpeg()) == "image/jpeg"

    def test_webp_header(self) -> None:
        assert sniff_mime(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"

    def test_unknown(self) -> None:
        assert sniff_mime(b"GIF89a....") is None


# ---------------------------------------------------------------------------
# load_document
# ---------------------------------------------------------------------------


class TestLoadDocument:
    def test_pdf_page_count(self) -> None:
        data = make_pdf(["Standard light", "UV light", "Polarized"])
        handle = load_document(data, "scan.pdf")
        assert handle.is_pdf
        assert handle.page_count == 3
        assert handle.fingerprint == fingerprint(data)

    def test_image_is_single_page(self) -> None:
        handle = load_document(make_png(), "face.png")
        assert handle.mime_type == "image/png"
        assert handle.page_count == 1
        assert not handle.is_pdf

    def test_uppercase_extension_accepted(self) -> None:
        assert load_document(make_jpeg(), "FACE.JPG").mime_type == "image/jpeg"

    def test_no_extension_trusts_content(self) -> None:
        assert load_document(make_png(), "upload").mime_type == "image/png"

    def test_empty_is_invalid(self) -> None:
        with pytest.raises(InvalidFormatError):
            load_document(b"", "scan.pdf")

    def test_unknown_magic_is_invalid(self) -> None:
        with pytest.raises(InvalidFormatError) as exc_info:
            load_document(b"hello world", "notes.pdf")
        assert exc_info.value.kind is ErrorKind.INVALID_FORMAT

    def test_extension_mismatch_is_invalid(self) -> None:
        with pytest.raises(InvalidFormatError, match="declared as application/pdf"):
            load_document(make_png(), "scan.pdf")

    def test_unsupported_extension_is_invalid(self) -> None:
        with pytest.raises(InvalidFormatError, match="Unsupported file extension"):
            load_document(make_png(), "scan.gif")

    def test_disallowed_type(self) -> None:
        with pytest.raises(InvalidFormatError, match="not accepted"):
            load_document(make_png(), "face.png", allowed_types=[PDF_MIME])

    def test_truncated_pdf_is_invalid(self) -> None:
        with pytest.raises(InvalidFormatError):
            load_document(b"%PDF-1.7\n% broken", "scan.pdf")

    def test_corrupt_image_is_invalid(self) -> None:
        with pytest.raises(InvalidFormatError, match="could not be decoded"):
            load_document(b"\x89PNG\r\n\x1a\n" + b"\x00" * 16, "face.png")

    def test_too_large(self) -> None:
        data = make_png()
        with pytest.raises(TooLargeError) as exc_info:
            load_document(data, "face.png", max_bytes=len(data) - 1)
        assert exc_info.value.kind is ErrorKind.TOO_LARGE

    def test_exactly_at_limit_is_accepted(self) -> None:
        data = make_png()
        assert load_document(data, "face.png", max_bytes=len(data)).page_count == 1


# ---------------------------------------------------------------------------
# base64 and path variants
# ---------------------------------------------------------------------------


class TestAlternateSources:
    def test_base64_matches_raw_fingerprint(self) -> None:
        data = make_pdf(["Standard light"])
        encoded = base64.b64encode(data).decode()
        assert load_document_from_base64(encoded, "scan.pdf").fingerprint == fingerprint(data)

    def test_data_url_prefix_is_stripped(self) -> None:
        data = make_png()
        encoded = "data:image/png;base64," + base64.b64encode(data).decode()
        assert load_document_from_base64(encoded, "face.png").fingerprint == fingerprint(data)

    def test_invalid_base64(self) -> None:
        with pytest.raises(InvalidFormatError, match="Invalid base64"):
            load_document_from_base64("not base64!!", "scan.pdf")

    def test_base64_too_large_rejected_before_decoding(self) -> None:
        encoded = base64.b64encode(b"x" * 4096).decode()
        with pytest.raises(TooLargeError):
            load_document_from_base64(encoded, "scan.pdf", max_bytes=100)

    def test_path(self, tmp_path) -> None:
        data = make_pdf(["Standard light", "UV light"])
        target = tmp_path / "report.pdf"
        target.write_bytes(data)
        handle = load_document_from_path(target)
        assert handle.filename == "report.pdf"
        assert handle.page_count == 2

    def test_missing_path(self, tmp_path) -> None:
        with pytest.raises(InvalidFormatError, match="File not found"):
            load_document_from_path(tmp_path / "missing.pdf")

    def test_path_too_large(self, tmp_path) -> None:
        target = tmp_path / "face.png"
        target.write_bytes(make_png())
        with pytest.raises(TooLargeError):
            load_document_from_path(target, max_bytes=10)

    def test_relative_path_under_root(self, tmp_path) -> None:
        (tmp_path / "face.png").write_bytes(make_png())
        handle = load_document_from_path("face.png", root=tmp_path)
        assert handle.filename == "face.png"

    def test_absolute_path_under_root(self, tmp_path) -> None:
        target = tmp_path / "face.png"
        target.write_bytes(make_png())
        assert load_document_from_path(target, root=tmp_path).filename == "face.png"

    @pytest.mark.parametrize("path", ["../secret.png", "sub/../../secret.png"])
    def test_traversal_out_of_root_rejected(self, tmp_path, path) -> None:
        root = tmp_path / "intake"
        (root / "sub").mkdir(parents=True)
        (tmp_path / "secret.png").write_bytes(make_png())
        with pytest.raises(InvalidFormatError, match="outside the intake directory"):
            load_document_from_path(path, root=root)

    def test_absolute_path_outside_root_rejected(self, tmp_path) -> None:
        root = tmp_path / "intake"
        root.mkdir()
        secret = tmp_path / "secret.png"
        secret.write_bytes(make_png())
        with pytest.raises(InvalidFormatError, match="outside the intake directory"):
            load_document_from_path(secret, root=root)

    def test_symlink_out_of_root_rejected(self, tmp_path) -> None:
        root = tmp_path / "intake"
        root.mkdir()
        secret = tmp_path / "secret.png"
        secret.write_bytes(make_png())
        (root / "face.png").symlink_to(secret)
        with pytest.raises(InvalidFormatError, match="outside the intake directory"):
            load_document_from_path("face.png", root=root)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class TestRenderPages:
    def test_pdf_pages_render_to_png_with_text(self) -> None:
        texts = [
            "Standard light photograph, full face view",
            "UV light photograph, full face view",
        ]
        handle = load_document(make_pdf(texts), "scan.pdf")
        pages = render_pages(handle, dpi=72)

        assert [p.page_number for p in pages] == [1, 2]
        for page in pages:
            assert page.mime_type == "image/png"
            assert page.image_bytes.startswith(b"\x89PNG")
            assert page.width > 0 and page.height > 0
        assert "Standard light" in pages[0].text
        assert "UV light" in pages[1].text

    def test_image_passes_through(self) -> None:
        data = make_jpeg()
        handle = load_document(data, "face.jpg")
        pages = render_pages(handle)
        assert len(pages) == 1
        assert pages[0].image_bytes == data
        assert pages[0].mime_type == "image/jpeg"
        assert (pages[0].width, pages[0].height) == (24, 24)
