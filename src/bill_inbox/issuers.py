"""Known-issuer registry, fuzzy issuer resolution and category inference.

Both tables are plain ordered data loaded once at import. Registry order
is the tie-break for every match, so it must not be re-sorted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

from bill_inbox.models import Categorization, Category
from bill_inbox.normalize import normalize_text

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.8

LOGO_BASE_URL = "https://img.logo.dev"


@dataclass(frozen=True)
class KnownIssuer:
    """A provider with a canonical name, optional aliases and a web domain."""

    name: str
    domain: str
    aliases: tuple[str, ...] = ()

    @property
    def names(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)


KNOWN_ISSUERS: tuple[KnownIssuer, ...] = (
    KnownIssuer("EDP", "edp.pt"),
    KnownIssuer("Galp", "galp.com"),
    KnownIssuer("Iberdrola", "iberdrola.pt"),
    KnownIssuer("Goldenergy", "goldenergy.pt"),
    KnownIssuer("Endesa", "endesa.pt"),
    KnownIssuer("Plenitude", "plenitude.pt"),
    KnownIssuer("Repsol", "repsol.pt"),
    KnownIssuer("ENGIE", "engie.pt"),
    KnownIssuer("AdP", "adp.pt", ("Águas de Portugal", "Aguas de Portugal")),
    KnownIssuer("EPAL", "epal.pt"),
    KnownIssuer("MEO", "meo.pt"),
    KnownIssuer("NOS", "nos.pt"),
    KnownIssuer("Vodafone", "vodafone.pt", ("Vodafone Portugal",)),
    KnownIssuer("NOWO", "nowo.pt"),
    KnownIssuer("DIGI", "digi.pt", ("Digi Portugal",)),
)

# First category whose keyword occurs in the normalized issuer wins.
CATEGORY_KEYWORDS: tuple[tuple[Category, tuple[str, ...]], ...] = (
    (Category.ELECTRICITY, ("edp", "energia", "electricity", "eletricidade")),
    (Category.WATER, ("agua", "water", "epal", "adp")),
    (Category.GAS, ("gas", "galp", "repsol")),
    (Category.INTERNET, ("meo", "nos", "vodafone", "digi", "nowo", "internet")),
    (Category.INSURANCE, ("seguro", "insurance")),
)

DEFAULT_CATEGORY = Category.TELECOM


def similarity(query: str, candidate: str) -> float:
    """Score two normalized names.

    1.0 equal, 0.9 prefix either way, 0.8 substring either way, else 0.
    """
    if query == candidate:
        return 1.0
    if candidate.startswith(query) or query.startswith(candidate):
        return 0.9
    if query in candidate or candidate in query:
        return 0.8
    return 0.0


def resolve_issuer(
    issuer: str, registry: tuple[KnownIssuer, ...] = KNOWN_ISSUERS
) -> KnownIssuer | None:
    """Return the registry entry for a noisy issuer string, or None."""
    query = normalize_text(issuer)
    if not query:
        return None

    for known in registry:
        if query in (normalize_text(n) for n in known.names):
            return known

    best: KnownIssuer | None = None
    best_score = 0.0
    for known in registry:
        for name in known.names:
            score = similarity(query, normalize_text(name))
            if score > best_score:
                best, best_score = known, score

    if best is not None and best_score >= FUZZY_THRESHOLD:
        return best
    return None


def logo_url_for(issuer: str, token: str | None = None) -> str | None:
    """Build the logo URL for an issuer, or None when it is unknown."""
    known = resolve_issuer(issuer)
    if known is None:
        logger.debug("No known issuer for %r", issuer)
        return None

    params: dict[str, str] = {}
    if token:
        params["token"] = token
    params.update({"format": "webp", "retina": "true", "size": "128"})
    url = f"{LOGO_BASE_URL}/{known.domain}?{urlencode(params)}"
    logger.debug("Logo for %r resolved via %s", issuer, known.domain)
    return url


def infer_category(issuer: str) -> Category:
    """Guess a category from keywords in the issuer name."""
    normalized = normalize_text(issuer)
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def categorize(issuer: str) -> Categorization:
    """Categorize an issuer without looking at any document."""
    category = infer_category(issuer)
    return Categorization(category=category, description=f"{issuer} - {category}")
