"""HTTP surface for invoice parsing and upload."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Annotated, Any, TypeVar
from uuid import UUID

from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from bill_inbox.config import get_logo_token, get_store_path
from bill_inbox.db import get_connection
from bill_inbox.errors import BillInboxError, InvalidRequestError
from bill_inbox.extraction import ExtractionBackend, create_backend, decode_document
from bill_inbox.issuers import categorize
from bill_inbox.models import CategorizeRequest, DocumentRequest
from bill_inbox.pipeline import analyze_document, error_body, process_document
from bill_inbox.repository import BillRepository, PostgresBillRepository
from bill_inbox.store import DocumentStore, LocalDocumentStore

logger = logging.getLogger(__name__)

app = FastAPI(title="bill-inbox")

_RequestT = TypeVar("_RequestT", DocumentRequest, CategorizeRequest)


def get_backend_factory() -> Callable[[], ExtractionBackend]:
    """Backends are built lazily so categorize-only calls need no credentials."""
    return create_backend


def get_repository() -> Iterator[BillRepository]:
    with get_connection() as conn:
        yield PostgresBillRepository(conn)


def get_store() -> DocumentStore:
    return LocalDocumentStore(get_store_path())


def get_logo() -> str | None:
    return get_logo_token()


@app.exception_handler(BillInboxError)
async def _bill_inbox_error(_request: Request, exc: BillInboxError) -> JSONResponse:
    logger.warning("Request failed (%s): %s", exc.kind, exc)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))


@app.exception_handler(Exception)
async def _unexpected_error(_request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(status_code=500, content=error_body(BillInboxError(str(exc))))


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/categorize-invoice")
def categorize_invoice(
    body: Annotated[dict[str, Any], Body()],
    backend_factory: Annotated[
        Callable[[], ExtractionBackend], Depends(get_backend_factory)
    ],
    logo_token: Annotated[str | None, Depends(get_logo)],
) -> dict[str, Any]:
    """Parse a document (``pdfData``) or categorize an issuer (``issuer``)."""
    if body.get("pdfData"):
        request = _validate(DocumentRequest, body)
        document = decode_document(request.pdf_data, request.file_name)
        parsed = analyze_document(
            document,
            backend_factory(),
            issuer_hint=body.get("issuer") or None,
            logo_token=logo_token,
        )
        return parsed.to_response()

    request = _validate(CategorizeRequest, body)
    logger.info("Categorizing issuer %r", request.issuer)
    return categorize(request.issuer).model_dump(mode="json")


@app.post("/invoices", status_code=201)
def upload_invoice(
    request: DocumentRequest,
    user_id: Annotated[UUID, Header(alias="X-User-Id")],
    backend_factory: Annotated[
        Callable[[], ExtractionBackend], Depends(get_backend_factory)
    ],
    repo: Annotated[BillRepository, Depends(get_repository)],
    store: Annotated[DocumentStore, Depends(get_store)],
    logo_token: Annotated[str | None, Depends(get_logo)],
) -> dict[str, Any]:
    """Parse an uploaded invoice and file it under the matching service."""
    document = decode_document(request.pdf_data, request.file_name)
    outcome = process_document(
        document,
        user_id,
        backend=backend_factory(),
        repo=repo,
        store=store,
        logo_token=logo_token,
    )
    return outcome.to_response()


def _validate(model: type[_RequestT], body: dict[str, Any]) -> _RequestT:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        msg = f"Invalid request body: {exc}"
        raise InvalidRequestError(msg) from exc
