"""Tests for bill_inbox.renderer."""

from __future__ import annotations

import base64
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import pytest

from bill_inbox.models import Attachment, RawBill
from bill_inbox.renderer import (
    _embed_inline_images,
    _find_attachment,
    _html_to_pdf_bytes,
    _render_text_to_pdf,
    render_document,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


def _bill(**kwargs: object) -> RawBill:
    defaults: dict[str, object] = {
        "source_id": "test",
        "subject": "Fatura",
        "sender": "faturas@example.pt",
        "date": datetime(2025, 1, 1, tzinfo=UTC),
    }
    defaults.update(kwargs)
    return RawBill(**defaults)  # type: ignore[arg-type]


class TestRenderDocument:
    """Tests for the top-level render_document function."""

    def test_pdf_attachment_passthrough(self) -> None:
        pdf_data = b"%PDF-1.4 test content"
        raw = _bill(attachments=[Attachment("fatura.pdf", "application/pdf", pdf_data)])

        document = render_document(raw)

        assert document.data == pdf_data
        assert document.media_type == "application/pdf"
        assert document.filename == "fatura.pdf"

    def test_pdf_attachment_preferred_over_html(self) -> None:
        raw = _bill(
            html_body="<p>Fatura</p>",
            attachments=[Attachment("fatura.pdf", "application/pdf", b"%PDF-1.4")],
        )
        assert render_document(raw).data == b"%PDF-1.4"

    def test_attached_image_used(self) -> None:
        raw = _bill(
            html_body="<p>Segue a fatura</p>",
            attachments=[Attachment("scan.jpg", "image/jpeg", b"\xff\xd8\xff")],
        )

        document = render_document(raw)

        assert document.media_type == "image/jpeg"
        assert document.filename == "scan.jpg"

    @patch("bill_inbox.renderer._html_to_pdf_bytes")
    def test_inline_image_not_treated_as_document(self, mock_pdf: MagicMock) -> None:
        mock_pdf.return_value = b"pdf-from-html"
        raw = _bill(
            html_body='<img src="cid:logo">',
            attachments=[Attachment("logo", "image/png", b"\x89PNG")],
        )

        document = render_document(raw)

        assert document.data == b"pdf-from-html"
        assert document.media_type == "application/pdf"

    @patch("bill_inbox.renderer._html_to_pdf_bytes")
    def test_html_body_rendered(self, mock_pdf: MagicMock) -> None:
        mock_pdf.return_value = b"pdf-from-html"
        raw = _bill(subject="A sua fatura", html_body="<p>Valor: 42,99 €</p>")

        document = render_document(raw)

        assert document.data == b"pdf-from-html"
        assert document.filename == "A sua fatura.pdf"
        mock_pdf.assert_called_once()

    @patch("bill_inbox.renderer._html_to_pdf_bytes")
    def test_text_body_rendered(self, mock_pdf: MagicMock) -> None:
        mock_pdf.return_value = b"pdf-from-text"
        raw = _bill(text_body="Valor: 42,99 EUR")

        assert render_document(raw).data == b"pdf-from-text"

    @patch("bill_inbox.renderer._html_to_pdf_bytes")
    def test_no_body_fallback(self, mock_pdf: MagicMock) -> None:
        mock_pdf.return_value = b"pdf-fallback"
        raw = _bill(subject="")

        document = render_document(raw)

        assert document.data == b"pdf-fallback"
        assert document.filename == "email.pdf"
        assert "(sem conteúdo)" in mock_pdf.call_args[0][0]


class TestFindAttachment:
    """Tests for _find_attachment."""

    def test_first_match_wins(self) -> None:
        attachments = [
            Attachment("img.jpg", "image/jpeg", b"jpg"),
            Attachment("first.pdf", "application/pdf", b"first"),
            Attachment("second.pdf", "application/pdf", b"second"),
        ]
        found = _find_attachment(attachments, ("application/pdf",))
        assert found is not None
        assert found.data == b"first"

    def test_content_type_case_insensitive(self) -> None:
        attachments = [Attachment("doc.pdf", "Application/PDF", b"pdf")]
        assert _find_attachment(attachments, ("application/pdf",)) is not None

    def test_none_when_absent(self) -> None:
        assert _find_attachment([], ("application/pdf",)) is None

    def test_named_skips_inline(self) -> None:
        attachments = [Attachment("logo", "image/png", b"png")]
        assert _find_attachment(attachments, ("image/png",), named=True) is None


class TestEmbedInlineImages:
    """Tests for _embed_inline_images."""

    def test_replaces_cid_reference(self) -> None:
        img_data = b"\x89PNG"
        attachments = [Attachment("logo", "image/png", img_data)]

        result = _embed_inline_images('<img src="cid:logo">', attachments)

        expected_b64 = base64.b64encode(img_data).decode("ascii")
        assert f"data:image/png;base64,{expected_b64}" in result
        assert "cid:" not in result

    def test_no_cid_passthrough(self) -> None:
        html_content = '<img src="https://example.com/img.png">'
        assert _embed_inline_images(html_content, []) == html_content

    def test_missing_attachment_keeps_cid(self) -> None:
        attachments = [Attachment("other", "image/png", b"png")]
        result = _embed_inline_images('<img src="cid:missing">', attachments)
        assert "cid:missing" in result

    def test_non_image_attachments_ignored(self) -> None:
        attachments = [Attachment("doc", "application/pdf", b"pdf")]
        result = _embed_inline_images('<img src="cid:doc">', attachments)
        assert "cid:doc" in result


class TestRenderTextToPdf:
    """Tests for _render_text_to_pdf."""

    @patch("bill_inbox.renderer._html_to_pdf_bytes")
    def test_template_includes_headers(self, mock_pdf: MagicMock) -> None:
        mock_pdf.return_value = b"pdf-bytes"
        raw = _bill(
            subject="Fatura de março",
            date=datetime(2025, 3, 15, tzinfo=UTC),
            text_body="Total: 100,00 EUR",
        )

        _render_text_to_pdf(raw)

        rendered = mock_pdf.call_args[0][0]
        assert "Fatura de março" in rendered
        assert "faturas@example.pt" in rendered
        assert "2025-03-15" in rendered
        assert "Total: 100,00 EUR" in rendered

    @patch("bill_inbox.renderer._html_to_pdf_bytes")
    def test_html_escapes_body(self, mock_pdf: MagicMock) -> None:
        mock_pdf.return_value = b"pdf-bytes"
        raw = _bill(text_body="Valor: <script>alert('xss')</script>")

        _render_text_to_pdf(raw)

        rendered = mock_pdf.call_args[0][0]
        assert "<script>" not in rendered
        assert "&lt;script&gt;" in rendered


class TestHtmlToPdfBytes:
    """Integration tests with real weasyprint."""

    @pytest.fixture(autouse=True)
    def _weasyprint(self, caplog: pytest.LogCaptureFixture) -> Iterator[None]:
        """Skip without weasyprint's native libraries; silence its CSS warnings."""
        try:
            import weasyprint  # noqa: F401
        except (ImportError, OSError) as exc:
            pytest.skip(f"weasyprint unavailable: {exc}")
        caplog.set_level(logging.ERROR, logger="weasyprint")
        yield

    def test_produces_valid_pdf(self) -> None:
        result = _html_to_pdf_bytes("<html><body><p>Olá</p></body></html>")
        assert result[:5] == b"%PDF-"

    def test_unicode_content(self) -> None:
        result = _html_to_pdf_bytes(
            "<html><body><p>Valor: 42,99 €</p></body></html>"
        )
        assert result[:5] == b"%PDF-"
