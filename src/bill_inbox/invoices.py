"""Invoice creation and status transitions."""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from bill_inbox.errors import InvalidTransitionError
from bill_inbox.models import InvoiceDraft, InvoiceStatus

if TYPE_CHECKING:
    from uuid import UUID

    from bill_inbox.models import ExtractedFields, Invoice
    from bill_inbox.repository import BillRepository

logger = logging.getLogger(__name__)

# Settlement happens elsewhere; the only legal moves are out of pending.
ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset(
        {
            InvoiceStatus.PAID,
            InvoiceStatus.OVERDUE,
            InvoiceStatus.FAILED,
            InvoiceStatus.EXPIRED,
        }
    ),
}


def build_invoice_draft(
    service_id: UUID,
    fields: ExtractedFields,
    *,
    today: date | None = None,
    pdf_url: str | None = None,
    source_email_hash: str | None = None,
) -> InvoiceDraft:
    """Turn extracted fields into a pending invoice for ``service_id``.

    A missing due date falls back to ``today``; a missing amount is stored
    as 0 cents.
    """
    parsed_fields = {k: v for k, v in fields.payment_fields().items() if v is not None}
    return InvoiceDraft(
        service_id=service_id,
        amount_cents=fields.amount_cents or 0,
        due_date=fields.due_date or today or date.today(),
        issue_date=fields.issue_date,
        status=InvoiceStatus.PENDING,
        parsed_fields=parsed_fields,
        pdf_url=pdf_url,
        source_email_hash=source_email_hash,
    )


def write_invoice(
    repo: BillRepository,
    service_id: UUID,
    fields: ExtractedFields,
    *,
    today: date | None = None,
    pdf_url: str | None = None,
    source_email_hash: str | None = None,
) -> Invoice:
    """Insert one pending invoice. No deduplication is attempted."""
    draft = build_invoice_draft(
        service_id,
        fields,
        today=today,
        pdf_url=pdf_url,
        source_email_hash=source_email_hash,
    )
    if fields.amount_cents is None:
        logger.warning("No amount extracted for service %s, storing 0", service_id)
    invoice = repo.create_invoice(draft)
    logger.info(
        "Created invoice %s for service %s (%d cents, due %s)",
        invoice.id,
        service_id,
        invoice.amount_cents,
        invoice.due_date,
    )
    return invoice


def can_transition(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition_invoice(
    repo: BillRepository, invoice_id: UUID, target: InvoiceStatus
) -> Invoice:
    """Move an invoice to ``target`` if the status model allows it."""
    invoice = repo.get_invoice(invoice_id)
    if invoice is None:
        msg = f"Invoice {invoice_id} not found"
        raise LookupError(msg)
    if not can_transition(invoice.status, target):
        msg = f"Cannot move invoice {invoice_id} from {invoice.status} to {target}"
        raise InvalidTransitionError(msg)
    return repo.update_invoice_status(invoice_id, target)
