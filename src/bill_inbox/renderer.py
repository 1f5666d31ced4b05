"""Forwarded bill email to document rendering."""

from __future__ import annotations

import base64
import html
import logging
import re
from typing import TYPE_CHECKING

from bill_inbox.models import InboundDocument

if TYPE_CHECKING:
    from bill_inbox.models import Attachment, RawBill

logger = logging.getLogger(__name__)

PLAIN_TEXT_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
  body {{ font-family: monospace; font-size: 12px; margin: 2em; }}
  .header {{ border-bottom: 1px solid #ccc; padding-bottom: 1em; margin-bottom: 1em; }}
  .header p {{ margin: 0.2em 0; }}
  pre {{ white-space: pre-wrap; word-wrap: break-word; }}
</style>
</head>
<body>
<div class="header">
  <p><strong>Assunto:</strong> {subject}</p>
  <p><strong>De:</strong> {sender}</p>
  <p><strong>Data:</strong> {date}</p>
</div>
<pre>{body}</pre>
</body>
</html>
"""

_DOCUMENT_IMAGE_TYPES = ("image/png", "image/jpeg", "image/tiff")


def render_document(raw: RawBill) -> InboundDocument:
    """Turn a bill email into one document for extraction.

    Strategy (in order of preference):
    1. The first PDF attachment, as-is
    2. The first attached (not inline) page image
    3. The HTML body rendered via weasyprint
    4. The text body, or just the headers, wrapped in a template
    """
    pdf = _find_attachment(raw.attachments, ("application/pdf",))
    if pdf is not None:
        return InboundDocument(pdf.data, "application/pdf", pdf.filename)

    image = _find_attachment(raw.attachments, _DOCUMENT_IMAGE_TYPES, named=True)
    if image is not None:
        return InboundDocument(image.data, image.content_type, image.filename)

    filename = f"{raw.subject or 'email'}.pdf"
    if raw.html_body:
        logger.debug("Rendering HTML body of %s", raw.source_id)
        data = _render_html_to_pdf(raw.html_body, raw.attachments)
    else:
        data = _render_text_to_pdf(raw)
    return InboundDocument(data, "application/pdf", filename)


def _find_attachment(
    attachments: list[Attachment], content_types: tuple[str, ...], *, named: bool = False
) -> Attachment | None:
    """Return the first attachment of one of ``content_types``, or None.

    With ``named`` only attachments carrying a real filename count, so
    inline logos referenced from the HTML body are skipped.
    """
    for att in attachments:
        if att.content_type.lower() not in content_types:
            continue
        if named and "." not in att.filename:
            continue
        return att
    return None


def _render_html_to_pdf(html_content: str, attachments: list[Attachment]) -> bytes:
    """Render HTML to PDF, embedding any inline images."""
    html_with_images = _embed_inline_images(html_content, attachments)
    return _html_to_pdf_bytes(html_with_images)


def _embed_inline_images(html_content: str, attachments: list[Attachment]) -> str:
    """Replace cid: references with data: URIs from attachments."""
    attachment_map: dict[str, Attachment] = {}
    for att in attachments:
        if att.content_type.startswith("image/"):
            # Map by filename (which may be the Content-ID)
            attachment_map[att.filename] = att

    if not attachment_map:
        return html_content

    def replace_cid(match: re.Match[str]) -> str:
        cid = match.group(1)
        att = attachment_map.get(cid)
        if att is None:
            return match.group(0)
        b64 = base64.b64encode(att.data).decode("ascii")
        return f"data:{att.content_type};base64,{b64}"

    return re.sub(r"cid:([^\s\"'>]+)", replace_cid, html_content)


def _render_text_to_pdf(raw: RawBill) -> bytes:
    """Wrap text body in HTML template and render to PDF."""
    body = html.escape(raw.text_body or "(sem conteúdo)")
    rendered = PLAIN_TEXT_TEMPLATE.format(
        subject=html.escape(raw.subject),
        sender=html.escape(raw.sender),
        date=html.escape(raw.date.isoformat()),
        body=body,
    )
    return _html_to_pdf_bytes(rendered)


def _html_to_pdf_bytes(html_content: str) -> bytes:
    """Convert HTML string to PDF bytes via weasyprint."""
    import weasyprint

    doc = weasyprint.HTML(string=html_content)
    return doc.write_pdf()  # type: ignore[no-any-return]
