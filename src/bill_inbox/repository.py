"""Service and invoice persistence."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Protocol

from psycopg.types.json import Jsonb

from bill_inbox.models import Invoice, InvoiceDraft, InvoiceStatus, Service

if TYPE_CHECKING:
    from collections.abc import Iterator
    from contextlib import AbstractContextManager
    from uuid import UUID

    import psycopg

    from bill_inbox.models import Category

logger = logging.getLogger(__name__)

_SERVICE_COLUMNS = (
    "id, user_id, issuer, category, contract_number, logo_url, autopay, "
    "autopay_limit_cents, status, created_at, updated_at"
)
_INVOICE_COLUMNS = (
    "id, service_id, amount_cents, currency, due_date, issue_date, status, "
    "parsed_fields, pdf_url, source_email_hash, created_at, updated_at"
)


class BillRepository(Protocol):
    """Protocol for the store holding services and invoices."""

    def serialized(self, user_id: UUID) -> AbstractContextManager[None]: ...

    def find_services_containing(self, user_id: UUID, issuer: str) -> list[Service]: ...

    def create_service(
        self,
        user_id: UUID,
        issuer: str,
        *,
        category: Category | None = None,
        logo_url: str | None = None,
        contract_number: str | None = None,
    ) -> Service: ...

    def set_service_logo(self, service_id: UUID, logo_url: str) -> None: ...

    def create_invoice(self, draft: InvoiceDraft) -> Invoice: ...

    def get_invoice(self, invoice_id: UUID) -> Invoice | None: ...

    def update_invoice_status(
        self, invoice_id: UUID, status: InvoiceStatus
    ) -> Invoice: ...

    def processed_source_hashes(self, user_id: UUID) -> set[str]: ...


class PostgresBillRepository:
    """PostgreSQL implementation of BillRepository.

    Expects an autocommit connection with ``dict_row`` rows, as returned
    by ``bill_inbox.db.get_connection``.
    """

    def __init__(self, conn: psycopg.Connection[dict[str, Any]]) -> None:
        self.conn = conn

    @contextmanager
    def serialized(self, user_id: UUID) -> Iterator[None]:
        """Run the enclosed work in one transaction, one at a time per user."""
        with self.conn.transaction():
            self.conn.execute(
                "select pg_advisory_xact_lock(hashtextextended(%s, 0))",
                (str(user_id),),
            )
            yield

    def find_services_containing(self, user_id: UUID, issuer: str) -> list[Service]:
        """Return the user's services whose issuer contains ``issuer``."""
        rows = self.conn.execute(
            f"select {_SERVICE_COLUMNS} from services "
            "where user_id = %s and position(lower(%s) in lower(issuer)) > 0 "
            "order by updated_at desc, id",
            (user_id, issuer),
        ).fetchall()
        return [Service.model_validate(row) for row in rows]

    def create_service(
        self,
        user_id: UUID,
        issuer: str,
        *,
        category: Category | None = None,
        logo_url: str | None = None,
        contract_number: str | None = None,
    ) -> Service:
        row = self.conn.execute(
            "insert into services (user_id, issuer, category, logo_url, contract_number) "
            f"values (%s, %s, %s, %s, %s) returning {_SERVICE_COLUMNS}",
            (
                user_id,
                issuer,
                category.value if category else None,
                logo_url,
                contract_number,
            ),
        ).fetchone()
        return Service.model_validate(row)

    def set_service_logo(self, service_id: UUID, logo_url: str) -> None:
        self.conn.execute(
            "update services set logo_url = %s, updated_at = now() where id = %s",
            (logo_url, service_id),
        )

    def create_invoice(self, draft: InvoiceDraft) -> Invoice:
        row = self.conn.execute(
            "insert into invoices (service_id, amount_cents, currency, due_date, "
            "issue_date, status, parsed_fields, pdf_url, source_email_hash) "
            f"values (%s, %s, %s, %s, %s, %s, %s, %s, %s) returning {_INVOICE_COLUMNS}",
            (
                draft.service_id,
                draft.amount_cents,
                draft.currency,
                draft.due_date,
                draft.issue_date,
                draft.status.value,
                Jsonb(draft.parsed_fields),
                draft.pdf_url,
                draft.source_email_hash,
            ),
        ).fetchone()
        return Invoice.model_validate(row)

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        row = self.conn.execute(
            f"select {_INVOICE_COLUMNS} from invoices where id = %s", (invoice_id,)
        ).fetchone()
        return Invoice.model_validate(row) if row else None

    def update_invoice_status(self, invoice_id: UUID, status: InvoiceStatus) -> Invoice:
        row = self.conn.execute(
            "update invoices set status = %s, updated_at = now() "
            f"where id = %s returning {_INVOICE_COLUMNS}",
            (status.value, invoice_id),
        ).fetchone()
        if row is None:
            msg = f"Invoice {invoice_id} not found"
            raise LookupError(msg)
        return Invoice.model_validate(row)

    def processed_source_hashes(self, user_id: UUID) -> set[str]:
        """Source hashes of mailbox invoices already stored for the user."""
        rows = self.conn.execute(
            "select i.source_email_hash from invoices i "
            "join services s on s.id = i.service_id "
            "where s.user_id = %s and i.source_email_hash is not null",
            (user_id,),
        ).fetchall()
        return {str(row["source_email_hash"]) for row in rows}
