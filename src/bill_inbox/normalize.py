"""Text, amount, date and Multibanco normalization helpers."""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_ENTITY_RE = re.compile(r"^\d{5}$")
_REFERENCE_RE = re.compile(r"^\d{9}$")

# Both patterns reject longer digit runs; reference groups never span lines.
_ENTITY_IN_TEXT_RE = re.compile(r"(?:entidade|entity)[:\s]*(\d{5})(?!\d)", re.IGNORECASE)
_REFERENCE_IN_TEXT_RE = re.compile(
    r"(?:refer[êe]ncia|reference)[:\s]*(\d{3}[ \t]?\d{3}[ \t]?\d{3})(?![ \t]?\d)",
    re.IGNORECASE,
)

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d")


def normalize_text(value: str) -> str:
    """Lowercase, strip diacritics and punctuation, trim.

    Idempotent: ``normalize_text(normalize_text(s)) == normalize_text(s)``.
    """
    decomposed = unicodedata.normalize("NFD", value.lower())
    no_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    kept = "".join(ch for ch in no_marks if ch.isalnum() or ch.isspace())
    return kept.strip()


def to_cents(amount: Decimal | float | int | str) -> int:
    """Convert a major-unit amount to integer minor units.

    Rounds half up to the nearest cent. Floats go through ``str`` first so
    binary artifacts such as ``19.99 * 100 == 1998.9999...`` do not leak.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        msg = f"Not a monetary amount: {amount!r}"
        raise ValueError(msg) from exc
    if not value.is_finite():
        msg = f"Not a monetary amount: {amount!r}"
        raise ValueError(msg)
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clean_multibanco_entity(value: object) -> str | None:
    """Return a 5-digit entity or None when the value has another shape."""
    if value is None:
        return None
    candidate = re.sub(r"\s", "", str(value))
    return candidate if _ENTITY_RE.match(candidate) else None


def clean_multibanco_reference(value: object) -> str | None:
    """Strip embedded whitespace; accept exactly 9 digits, else None."""
    if value is None:
        return None
    candidate = re.sub(r"\s", "", str(value))
    return candidate if _REFERENCE_RE.match(candidate) else None


def find_multibanco(text: str) -> tuple[str | None, str | None]:
    """Scan free document text for a Multibanco entity and reference."""
    entity = None
    reference = None

    entity_match = _ENTITY_IN_TEXT_RE.search(text)
    if entity_match:
        entity = clean_multibanco_entity(entity_match.group(1))

    ref_match = _REFERENCE_IN_TEXT_RE.search(text)
    if ref_match:
        reference = clean_multibanco_reference(ref_match.group(1))

    return entity, reference


def coerce_date(value: object) -> date | None:
    """Best-effort conversion of an extracted date value.

    Accepts ``date``/``datetime`` objects, ISO strings and the
    day-first formats common on Portuguese invoices. Unparseable
    values become None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None
