"""Domain, extraction and request models for bill ingestion."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bill_inbox.normalize import (
    clean_multibanco_entity,
    clean_multibanco_reference,
    coerce_date,
)


class Category(StrEnum):
    """Fixed set of service categories."""

    ELECTRICITY = "Electricity"
    WATER = "Water"
    GAS = "Gas"
    INTERNET = "Internet"
    TELECOM = "Telecom"
    INSURANCE = "Insurance"


class InvoiceStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class Attachment:
    """An email attachment."""

    filename: str
    content_type: str
    data: bytes


@dataclass
class RawBill:
    """Raw bill email fetched from the proxy mailbox."""

    source_id: str
    subject: str
    sender: str
    date: datetime
    html_body: str | None = None
    text_body: str | None = None
    attachments: list[Attachment] = field(default_factory=list)


@dataclass(frozen=True)
class InboundDocument:
    """A decoded document ready for extraction.

    Only the first page of a multi-page document is analyzed.
    """

    data: bytes
    media_type: str
    filename: str = "document"


class ExtractedFields(BaseModel):
    """Structured payment data read from one invoice document.

    Amounts are integer cents. Multibanco values that do not have the
    expected shape are dropped rather than stored verbatim.
    """

    issuer: str = Field(min_length=1)
    category: Category | None = None
    amount_cents: int | None = Field(default=None, ge=0)
    due_date: date | None = None
    issue_date: date | None = None
    contract_number: str | None = None
    multibanco_entity: str | None = None
    multibanco_reference: str | None = None

    @field_validator("multibanco_entity", mode="before")
    @classmethod
    def _clean_entity(cls, value: object) -> str | None:
        return clean_multibanco_entity(value)

    @field_validator("multibanco_reference", mode="before")
    @classmethod
    def _clean_reference(cls, value: object) -> str | None:
        return clean_multibanco_reference(value)

    @field_validator("due_date", "issue_date", mode="before")
    @classmethod
    def _coerce_dates(cls, value: object) -> date | None:
        return coerce_date(value)

    @field_validator("issuer")
    @classmethod
    def _strip_issuer(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            msg = "issuer must not be blank"
            raise ValueError(msg)
        return stripped

    def payment_fields(self) -> dict[str, str | None]:
        """Payment-rail details kept in the invoice's parsed_fields map."""
        return {
            "multibanco_entity": self.multibanco_entity,
            "multibanco_reference": self.multibanco_reference,
        }


class ParsedInvoice(BaseModel):
    """Extracted fields enriched with a category and a resolved logo."""

    extracted: ExtractedFields
    category: Category
    logo_url: str | None = None

    def to_response(self) -> dict[str, Any]:
        """Shape the document-path success response."""
        f = self.extracted
        return {
            "issuer": f.issuer,
            "category": self.category.value,
            "amount_cents": f.amount_cents,
            "due_date": f.due_date.isoformat() if f.due_date else None,
            "issue_date": f.issue_date.isoformat() if f.issue_date else None,
            "contract_number": f.contract_number,
            "multibanco_entity": f.multibanco_entity,
            "multibanco_reference": f.multibanco_reference,
            "logo_url": self.logo_url,
            "parsed_fields": f.payment_fields(),
        }


class Categorization(BaseModel):
    category: Category
    description: str


class Service(BaseModel):
    """A biller a user tracks, as stored in the database."""

    id: UUID
    user_id: UUID
    issuer: str = Field(min_length=1)
    category: Category | None = None
    contract_number: str | None = None
    logo_url: str | None = None
    autopay: bool = False
    autopay_limit_cents: int | None = Field(default=None, gt=0)
    status: str = "active"
    created_at: datetime
    updated_at: datetime

    @field_validator("autopay", mode="before")
    @classmethod
    def _null_autopay(cls, value: object) -> object:
        return False if value is None else value

    @field_validator("category", mode="before")
    @classmethod
    def _unknown_category(cls, value: object) -> object:
        # rows written by other clients may carry free-text categories
        if value is None:
            return None
        try:
            return Category(value)
        except ValueError:
            return None


class InvoiceDraft(BaseModel):
    """Values for a new invoice row."""

    service_id: UUID
    amount_cents: int = Field(ge=0)
    currency: str = Field(default="EUR", pattern=r"^[A-Z]{3}$")
    due_date: date
    issue_date: date | None = None
    status: InvoiceStatus = InvoiceStatus.PENDING
    parsed_fields: dict[str, Any] = Field(default_factory=dict)
    pdf_url: str | None = None
    source_email_hash: str | None = None


class Invoice(InvoiceDraft):
    """Full invoice record as stored in the database."""

    id: UUID
    created_at: datetime
    updated_at: datetime

    @field_validator("parsed_fields", mode="before")
    @classmethod
    def _null_fields(cls, value: object) -> object:
        return {} if value is None else value

    @field_validator("status", mode="before")
    @classmethod
    def _null_status(cls, value: object) -> object:
        return InvoiceStatus.PENDING if value is None else value


class DocumentRequest(BaseModel):
    """Inbound document-parse request."""

    model_config = ConfigDict(populate_by_name=True)

    pdf_data: str = Field(alias="pdfData", min_length=1)
    file_name: str | None = Field(default=None, alias="fileName")


class CategorizeRequest(BaseModel):
    """Inbound categorize-only request."""

    model_config = ConfigDict(populate_by_name=True)

    issuer: str = Field(min_length=1)
    parsed_fields: dict[str, Any] | None = Field(default=None, alias="parsedFields")


class InvoiceReading(BaseModel):
    """What the LLM backend is asked to read off the first invoice page."""

    issuer: str = Field(
        min_length=1, description="Canonical name of the company billing the customer"
    )
    category: Category | None = Field(default=None, description="Kind of service")
    amount: Decimal | None = Field(
        default=None, ge=0, description="Total amount due in euros, e.g. 42.99"
    )
    due_date: date | None = Field(default=None, description="Payment due date")
    issue_date: date | None = Field(default=None, description="Invoice issue date")
    contract_number: str | None = Field(
        default=None, description="Customer account or contract number"
    )
    multibanco_entity: str | None = Field(
        default=None, description="Multibanco 'Entidade', 5 digits"
    )
    multibanco_reference: str | None = Field(
        default=None, description="Multibanco 'Referência', 9 digits"
    )
