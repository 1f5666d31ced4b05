"""Upload and mailbox pipelines: extract, resolve, reconcile, write.

Each document runs once, synchronously. Extraction happens before any
write, so an extraction failure leaves no service or invoice behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from bill_inbox.errors import BillInboxError
from bill_inbox.invoices import write_invoice
from bill_inbox.issuers import infer_category, logo_url_for
from bill_inbox.models import ParsedInvoice
from bill_inbox.reconcile import reconcile_service
from bill_inbox.renderer import render_document

if TYPE_CHECKING:
    from uuid import UUID

    from bill_inbox.adapters.base import BillSource
    from bill_inbox.extraction import ExtractionBackend
    from bill_inbox.models import InboundDocument, Invoice, Service
    from bill_inbox.repository import BillRepository
    from bill_inbox.store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadOutcome:
    """Everything one processed document produced."""

    parsed: ParsedInvoice
    service: Service
    invoice: Invoice
    service_created: bool
    logo_backfilled: bool

    def to_response(self) -> dict[str, Any]:
        return {
            "service_id": str(self.service.id),
            "invoice_id": str(self.invoice.id),
            "service_created": self.service_created,
            "logo_backfilled": self.logo_backfilled,
            "invoice": self.invoice.model_dump(mode="json"),
            "parsed": self.parsed.to_response(),
        }


@dataclass
class IngestReport:
    """Result of one pass over the proxy mailbox."""

    processed: list[UploadOutcome] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)


def analyze_document(
    document: InboundDocument,
    backend: ExtractionBackend,
    *,
    issuer_hint: str | None = None,
    logo_token: str | None = None,
) -> ParsedInvoice:
    """Extract fields and resolve the issuer's category and logo."""
    fields = backend.extract(document, issuer_hint=issuer_hint)
    category = fields.category or infer_category(fields.issuer)
    logo_url = logo_url_for(fields.issuer, logo_token)
    logger.info(
        "Parsed %s: issuer=%r category=%s logo=%s",
        document.filename,
        fields.issuer,
        category,
        "yes" if logo_url else "no",
    )
    return ParsedInvoice(extracted=fields, category=category, logo_url=logo_url)


def process_document(
    document: InboundDocument,
    user_id: UUID,
    *,
    backend: ExtractionBackend,
    repo: BillRepository,
    store: DocumentStore | None = None,
    logo_token: str | None = None,
    today: date | None = None,
    source_email_hash: str | None = None,
) -> UploadOutcome:
    """Run one document through the whole pipeline for ``user_id``."""
    parsed = analyze_document(document, backend, logo_token=logo_token)
    fields = parsed.extracted
    today = today or date.today()

    pdf_url = None
    if store is not None:
        pdf_url = store.save(
            user_id,
            fields.due_date or today,
            fields.issuer,
            fields.amount_cents or 0,
            document.data,
            document.media_type,
        )

    with repo.serialized(user_id):
        result = reconcile_service(
            repo,
            user_id,
            fields.issuer,
            category=parsed.category,
            logo_url=parsed.logo_url,
            contract_number=fields.contract_number,
        )
        invoice = write_invoice(
            repo,
            result.service.id,
            fields,
            today=today,
            pdf_url=pdf_url,
            source_email_hash=source_email_hash,
        )

    return UploadOutcome(
        parsed=parsed,
        service=result.service,
        invoice=invoice,
        service_created=result.created,
        logo_backfilled=result.logo_backfilled,
    )


def ingest_mailbox(
    source: BillSource,
    user_id: UUID,
    *,
    backend: ExtractionBackend,
    repo: BillRepository,
    store: DocumentStore | None = None,
    logo_token: str | None = None,
    today: date | None = None,
) -> IngestReport:
    """Process every bill email the user has not ingested yet.

    A failing email is logged and reported; the rest of the batch still
    runs. Failed emails are picked up again on the next pass.
    """
    report = IngestReport()
    processed = repo.processed_source_hashes(user_id)
    for raw in source.fetch_unprocessed(processed):
        try:
            document = render_document(raw)
            outcome = process_document(
                document,
                user_id,
                backend=backend,
                repo=repo,
                store=store,
                logo_token=logo_token,
                today=today,
                source_email_hash=raw.source_id,
            )
        except BillInboxError as exc:
            logger.error("Failed to ingest %r (%s): %s", raw.subject, exc.kind, exc)
            report.failed.append((raw.source_id, exc.user_message))
            continue
        report.processed.append(outcome)
    logger.info(
        "Mailbox pass done: %d ingested, %d failed",
        len(report.processed),
        len(report.failed),
    )
    return report


def error_body(exc: BillInboxError) -> dict[str, str]:
    """The JSON body returned to callers for a pipeline failure."""
    return {"error": exc.user_message, "kind": exc.kind}
