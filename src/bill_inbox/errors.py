"""Error taxonomy for the bill pipeline.

Every error carries the HTTP status it maps to and a user-facing message.
The raw detail stays in ``str(error)`` for logging.
"""

from __future__ import annotations

GENERIC_MESSAGE = "Erro ao processar fatura"


class BillInboxError(Exception):
    """Base class for pipeline failures surfaced to the caller."""

    kind = "error"
    status_code = 500
    user_message = GENERIC_MESSAGE


class ConfigurationError(BillInboxError, ValueError):
    """A required setting or credential is missing or invalid."""

    kind = "configuration"


class InvalidRequestError(BillInboxError):
    """The request body does not have either accepted shape."""

    kind = "invalid_request"
    status_code = 400
    user_message = "Pedido inválido"


class InvalidDocumentError(InvalidRequestError):
    """The submitted document payload cannot be decoded."""

    kind = "invalid_document"
    user_message = "Documento inválido"


class UpstreamError(BillInboxError):
    """The extraction backend failed."""

    kind = "upstream"


class RateLimitError(UpstreamError):
    kind = "rate_limited"
    status_code = 429
    user_message = "Limite de pedidos atingido. Por favor, tente novamente mais tarde."


class PaymentRequiredError(UpstreamError):
    kind = "payment_required"
    status_code = 402
    user_message = "Créditos insuficientes. Por favor, adicione créditos à sua conta."


class ExtractionTimeoutError(UpstreamError):
    """The asynchronous analysis did not finish within the poll ceiling."""

    kind = "timeout"


class MalformedResultError(UpstreamError):
    """The backend answered but without the expected structured result."""

    kind = "malformed_result"


class InvalidTransitionError(BillInboxError):
    kind = "invalid_transition"
    status_code = 409


def classify_upstream_failure(status_code: int, detail: str) -> UpstreamError:
    """Map a non-success upstream response to the matching error.

    Rate-limit and payment-required conditions are recognized by status
    code or by the phrase appearing in the upstream error text.
    """
    lowered = detail.lower()
    msg = f"Extraction backend error {status_code}: {detail}"
    if status_code == 429 or "rate limit" in lowered:
        return RateLimitError(msg)
    if status_code == 402 or "payment required" in lowered:
        return PaymentRequiredError(msg)
    return UpstreamError(msg)
