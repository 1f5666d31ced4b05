"""Invoice field extraction against an external document/AI backend.

Two backends share one contract: Azure Document Intelligence (submit,
then poll the operation until it settles) and a pydantic-ai agent with a
schema-constrained output. Neither retries; every failure is terminal
for the request.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from pydantic import ValidationError
from pydantic_ai import Agent, BinaryContent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior

from bill_inbox.config import (
    AzureConfig,
    get_anthropic_api_key,
    get_azure_config,
    get_extraction_backend,
    get_llm_model,
)
from bill_inbox.errors import (
    ExtractionTimeoutError,
    InvalidDocumentError,
    MalformedResultError,
    UpstreamError,
    classify_upstream_failure,
)
from bill_inbox.models import ExtractedFields, InboundDocument, InvoiceReading
from bill_inbox.normalize import find_multibanco, to_cents

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

UNKNOWN_ISSUER = "Unknown"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?,", re.I)

_MAGIC_NUMBERS: tuple[tuple[bytes, str], ...] = (
    (b"%PDF", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
)

_SYSTEM_PROMPT = """\
You read Portuguese utility and service invoices (electricity, water, gas, \
internet, telecom, insurance). Given the first page of an invoice, extract:

- issuer: the company billing the customer (e.g. "EDP Comercial", not an email address)
- category: one of Electricity, Water, Gas, Internet, Telecom, Insurance
- amount: the total amount to pay in euros (numeric, e.g. 42.99)
- due_date: the payment deadline ("Data limite de pagamento"), YYYY-MM-DD
- issue_date: the invoice date ("Data de emissão"), YYYY-MM-DD
- contract_number: the customer account or contract number
- multibanco_entity: the Multibanco "Entidade" (5 digits)
- multibanco_reference: the Multibanco "Referência" (9 digits, no spaces)

Leave a field empty when it is not printed on the page. Never guess \
Multibanco values.\
"""

_USER_PROMPT = (
    "Extract the payment details from this invoice. Read only the first page."
)


class ExtractionBackend(Protocol):
    """Turns one document into extracted invoice fields."""

    def extract(
        self, document: InboundDocument, *, issuer_hint: str | None = None
    ) -> ExtractedFields: ...


def decode_document(payload: str, filename: str | None = None) -> InboundDocument:
    """Decode a base64 payload, optionally wrapped in a data URL."""
    declared: str | None = None
    body = payload.strip()
    match = _DATA_URL_RE.match(body)
    if match:
        declared = match.group("mime")
        body = body[match.end() :]

    try:
        data = base64.b64decode("".join(body.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        msg = f"Document payload is not valid base64: {exc}"
        raise InvalidDocumentError(msg) from exc
    if not data:
        msg = "Document payload is empty"
        raise InvalidDocumentError(msg)

    media_type = sniff_media_type(data) or declared
    if media_type is None:
        msg = "Document must be a PDF or a page image"
        raise InvalidDocumentError(msg)

    return InboundDocument(
        data=data, media_type=media_type, filename=filename or "document"
    )


def sniff_media_type(data: bytes) -> str | None:
    """Identify PDF and common image formats by their magic bytes."""
    for magic, media_type in _MAGIC_NUMBERS:
        if data.startswith(magic):
            return media_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


class AzureDocumentBackend:
    """Azure Document Intelligence prebuilt-invoice backend."""

    model_id = "prebuilt-invoice"

    def __init__(
        self,
        config: AzureConfig,
        *,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.client = client or httpx.Client(timeout=30.0)
        self._sleep = sleep

    def extract(
        self, document: InboundDocument, *, issuer_hint: str | None = None
    ) -> ExtractedFields:
        """Submit the document, wait for the analysis and map its fields."""
        logger.info("Submitting %s to Azure Document Intelligence", document.filename)
        operation_url = self._submit(document)
        result = self._poll(operation_url)
        logger.info("Azure analysis complete for %s", document.filename)
        return fields_from_analyze_result(result, issuer_hint=issuer_hint)

    def _submit(self, document: InboundDocument) -> str:
        url = (
            f"{self.config.endpoint}/formrecognizer/documentModels/"
            f"{self.model_id}:analyze"
        )
        try:
            response = self.client.post(
                url,
                params={"api-version": self.config.api_version, "pages": "1"},
                headers={
                    "Content-Type": "application/octet-stream",
                    "Ocp-Apim-Subscription-Key": self.config.key,
                },
                content=document.data,
            )
        except httpx.HTTPError as exc:
            msg = f"Azure submit failed: {exc}"
            raise UpstreamError(msg) from exc

        if response.is_error:
            logger.error("Azure submit error %s: %s", response.status_code, response.text)
            raise classify_upstream_failure(response.status_code, response.text)

        operation_url = response.headers.get("operation-location")
        if not operation_url:
            msg = "No operation-location header in Azure response"
            raise MalformedResultError(msg)
        return operation_url

    def _poll(self, operation_url: str) -> dict[str, Any]:
        headers = {"Ocp-Apim-Subscription-Key": self.config.key}
        for attempt in range(1, self.config.max_poll_attempts + 1):
            self._sleep(self.config.poll_interval)
            try:
                response = self.client.get(operation_url, headers=headers)
            except httpx.HTTPError as exc:
                msg = f"Azure poll failed: {exc}"
                raise UpstreamError(msg) from exc

            if response.is_error:
                logger.error(
                    "Azure poll error %s: %s", response.status_code, response.text
                )
                raise classify_upstream_failure(response.status_code, response.text)

            try:
                payload = response.json()
            except ValueError as exc:
                msg = "Azure poll response is not JSON"
                raise MalformedResultError(msg) from exc

            status = payload.get("status")
            logger.debug("Azure status %s (attempt %d)", status, attempt)
            if status == "succeeded":
                return payload  # type: ignore[no-any-return]
            if status == "failed":
                msg = f"Azure Document Intelligence analysis failed: {payload.get('error')}"
                raise UpstreamError(msg)

        msg = f"Azure analysis timed out after {self.config.max_poll_attempts} polls"
        raise ExtractionTimeoutError(msg)


def fields_from_analyze_result(
    result: dict[str, Any], *, issuer_hint: str | None = None
) -> ExtractedFields:
    """Map an Azure prebuilt-invoice result onto ExtractedFields."""
    analyze = result.get("analyzeResult") or {}
    documents = analyze.get("documents") or []
    if not documents:
        msg = "No document found in Azure results"
        raise MalformedResultError(msg)

    fields: dict[str, Any] = documents[0].get("fields") or {}

    issuer = (
        _text(fields, "VendorName", "content")
        or _text(fields, "VendorName", "valueString")
        or (issuer_hint or "").strip()
        or UNKNOWN_ISSUER
    )

    total = _first_present(
        _field(fields, "InvoiceTotal", "valueCurrency", "amount"),
        _field(fields, "InvoiceTotal", "valueNumber"),
        _field(fields, "AmountDue", "valueCurrency", "amount"),
        _field(fields, "AmountDue", "valueNumber"),
    )
    amount_cents = _amount_to_cents(total)

    contract_number = (
        _text(fields, "CustomerAccountId", "content")
        or _text(fields, "CustomerId", "content")
        or _text(fields, "InvoiceId", "content")
    )

    entity, reference = find_multibanco(analyze.get("content") or "")

    try:
        return ExtractedFields(
            issuer=issuer,
            amount_cents=amount_cents,
            due_date=_field(fields, "DueDate", "valueDate")
            or _field(fields, "DueDate", "content"),
            issue_date=_field(fields, "InvoiceDate", "valueDate")
            or _field(fields, "InvoiceDate", "content"),
            contract_number=contract_number,
            multibanco_entity=entity,
            multibanco_reference=reference,
        )
    except ValidationError as exc:
        msg = f"Azure result failed validation: {exc}"
        raise MalformedResultError(msg) from exc


def _field(fields: dict[str, Any], name: str, *path: str) -> Any:
    node: Any = fields.get(name)
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _text(fields: dict[str, Any], name: str, key: str) -> str | None:
    value = _field(fields, name, key)
    if value is None:
        return None
    return str(value).strip() or None


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _amount_to_cents(total: Any) -> int | None:
    if total is None:
        return None
    try:
        cents = to_cents(total)
    except ValueError:
        logger.warning("Ignoring unreadable amount %r", total)
        return None
    if cents < 0:
        logger.warning("Ignoring negative amount %r", total)
        return None
    return cents


class LlmExtractionBackend:
    """Schema-constrained extraction with a pydantic-ai agent.

    The whole document is attached; the prompt restricts the model to its
    first page, the same page Azure analyzes.
    """

    def __init__(self, agent: Agent[None, InvoiceReading] | None = None) -> None:
        self.agent = agent or create_extraction_agent()

    def extract(
        self, document: InboundDocument, *, issuer_hint: str | None = None
    ) -> ExtractedFields:
        logger.info("Sending %s to the extraction model", document.filename)
        prompt = [
            _USER_PROMPT,
            BinaryContent(data=document.data, media_type=document.media_type),
        ]
        try:
            result: Any = self.agent.run_sync(prompt)
        except ModelHTTPError as exc:
            logger.error("Model error %s: %s", exc.status_code, exc.body)
            raise classify_upstream_failure(exc.status_code, str(exc.body)) from exc
        except UnexpectedModelBehavior as exc:
            msg = f"Model returned no usable invoice fields: {exc}"
            raise MalformedResultError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Model request failed: {exc}"
            raise UpstreamError(msg) from exc

        reading: InvoiceReading | None = result.output
        if reading is None:
            msg = "Model returned no usable invoice fields"
            raise MalformedResultError(msg)
        return fields_from_reading(reading, issuer_hint=issuer_hint)


def fields_from_reading(
    reading: InvoiceReading, *, issuer_hint: str | None = None
) -> ExtractedFields:
    """Convert the model's major-unit reading into ExtractedFields."""
    try:
        return ExtractedFields(
            issuer=reading.issuer.strip() or issuer_hint or UNKNOWN_ISSUER,
            category=reading.category,
            amount_cents=_amount_to_cents(reading.amount),
            due_date=reading.due_date,
            issue_date=reading.issue_date,
            contract_number=reading.contract_number,
            multibanco_entity=reading.multibanco_entity,
            multibanco_reference=reading.multibanco_reference,
        )
    except ValidationError as exc:
        msg = f"Model output failed validation: {exc}"
        raise MalformedResultError(msg) from exc


def create_extraction_agent() -> Agent[None, InvoiceReading]:
    """Create a pydantic-ai Agent configured for invoice extraction."""
    # Ensure API key is available (fail fast)
    get_anthropic_api_key()

    model_name = get_llm_model()
    return Agent(
        f"anthropic:{model_name}",
        output_type=InvoiceReading,
        system_prompt=_SYSTEM_PROMPT,
    )


def create_backend(name: str | None = None) -> ExtractionBackend:
    """Build the configured extraction backend.

    Credentials are checked here, before any network call.
    """
    name = name or get_extraction_backend()
    if name == "llm":
        return LlmExtractionBackend()
    return AzureDocumentBackend(get_azure_config())
