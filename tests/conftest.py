"""Shared test fixtures."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import pytest

from bill_inbox.config import AzureConfig, ImapConfig
from bill_inbox.models import (
    ExtractedFields,
    InboundDocument,
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
    RawBill,
    Service,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from bill_inbox.models import Category

PDF_BYTES = b"%PDF-1.4 fake invoice"


class InMemoryBillRepository:
    """BillRepository backed by dicts, mirroring the SQL semantics."""

    def __init__(self) -> None:
        self.services: dict[UUID, Service] = {}
        self.invoices: dict[UUID, Invoice] = {}
        self.logo_updates: list[tuple[UUID, str]] = []
        self.serialized_calls: list[UUID] = []
        self._clock = datetime(2025, 1, 1, tzinfo=UTC)

    def _now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    @contextmanager
    def serialized(self, user_id: UUID) -> Iterator[None]:
        self.serialized_calls.append(user_id)
        yield

    def add_service(self, user_id: UUID, issuer: str, **kwargs: object) -> Service:
        now = self._now()
        service = Service.model_validate(
            {
                "id": uuid4(),
                "user_id": user_id,
                "issuer": issuer,
                "created_at": now,
                "updated_at": now,
                **kwargs,
            }
        )
        self.services[service.id] = service
        return service

    def find_services_containing(self, user_id: UUID, issuer: str) -> list[Service]:
        needle = issuer.lower()
        found = [
            s
            for s in self.services.values()
            if s.user_id == user_id and needle in s.issuer.lower()
        ]
        return sorted(found, key=lambda s: s.updated_at, reverse=True)

    def create_service(
        self,
        user_id: UUID,
        issuer: str,
        *,
        category: Category | None = None,
        logo_url: str | None = None,
        contract_number: str | None = None,
    ) -> Service:
        return self.add_service(
            user_id,
            issuer,
            category=category,
            logo_url=logo_url,
            contract_number=contract_number,
        )

    def set_service_logo(self, service_id: UUID, logo_url: str) -> None:
        self.logo_updates.append((service_id, logo_url))
        service = self.services[service_id]
        self.services[service_id] = service.model_copy(
            update={"logo_url": logo_url, "updated_at": self._now()}
        )

    def create_invoice(self, draft: InvoiceDraft) -> Invoice:
        now = self._now()
        invoice = Invoice(
            **draft.model_dump(), id=uuid4(), created_at=now, updated_at=now
        )
        self.invoices[invoice.id] = invoice
        return invoice

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        return self.invoices.get(invoice_id)

    def update_invoice_status(self, invoice_id: UUID, status: InvoiceStatus) -> Invoice:
        invoice = self.invoices[invoice_id].model_copy(
            update={"status": status, "updated_at": self._now()}
        )
        self.invoices[invoice_id] = invoice
        return invoice

    def processed_source_hashes(self, user_id: UUID) -> set[str]:
        owned = {s.id for s in self.services.values() if s.user_id == user_id}
        return {
            i.source_email_hash
            for i in self.invoices.values()
            if i.service_id in owned and i.source_email_hash
        }


class StubBackend:
    """ExtractionBackend returning canned fields or raising a canned error."""

    def __init__(
        self, fields: ExtractedFields | None = None, error: Exception | None = None
    ) -> None:
        self.fields = fields
        self.error = error
        self.calls: list[tuple[InboundDocument, str | None]] = []

    def extract(
        self, document: InboundDocument, *, issuer_hint: str | None = None
    ) -> ExtractedFields:
        self.calls.append((document, issuer_hint))
        if self.error is not None:
            raise self.error
        assert self.fields is not None
        return self.fields


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    """Provide a temporary directory as the document store root."""
    root = tmp_path / "bills"
    root.mkdir()
    return root


@pytest.fixture
def imap_config() -> ImapConfig:
    """Provide a test IMAP configuration."""
    return ImapConfig(
        host="imap.example.com",
        username="inbox@example.com",
        password="secret",  # pragma: allowlist secret
        port=993,
        folder="INBOX",
    )


@pytest.fixture
def azure_config() -> AzureConfig:
    return AzureConfig(
        endpoint="https://di.example.com",
        key="azure-key",  # pragma: allowlist secret
        poll_interval=0.0,
        max_poll_attempts=3,
    )


@pytest.fixture
def user_id() -> UUID:
    return UUID("11111111-2222-3333-4444-555555555555")


@pytest.fixture
def repo() -> InMemoryBillRepository:
    return InMemoryBillRepository()


@pytest.fixture
def pdf_document() -> InboundDocument:
    return InboundDocument(
        data=PDF_BYTES, media_type="application/pdf", filename="fatura.pdf"
    )


@pytest.fixture
def edp_fields() -> ExtractedFields:
    """Fields as read from a typical EDP electricity bill."""
    return ExtractedFields(
        issuer="EDP Comercial",
        amount_cents=4299,
        due_date="2025-07-10",
        issue_date="2025-06-20",
        contract_number="CT-998877",
        multibanco_entity="21223",
        multibanco_reference="123 456 789",
    )


@pytest.fixture
def sample_raw_bill() -> RawBill:
    """Provide a minimal forwarded bill email."""
    return RawBill(
        source_id="a" * 64,
        subject="A sua fatura EDP",
        sender="faturas@edp.pt",
        date=datetime(2025, 6, 20, 9, 0, 0, tzinfo=UTC),
        text_body="Valor: 42,99 EUR\nEntidade: 21223\nReferência: 123 456 789",
    )


@pytest.fixture
def stub_backend() -> type[StubBackend]:
    """Provide the StubBackend class for building canned extraction backends."""
    return StubBackend
