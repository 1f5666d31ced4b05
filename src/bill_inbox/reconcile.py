"""Find or create the service an incoming invoice belongs to."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from bill_inbox.models import Category, Service
    from bill_inbox.repository import BillRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """The service chosen for an invoice and what was done to get it."""

    service: Service
    created: bool = False
    logo_backfilled: bool = False


def pick_service(candidates: list[Service], issuer: str) -> Service | None:
    """Choose among services whose issuer contains the extracted issuer.

    The closest-length issuer wins, then the most recently updated, then
    the lowest id, so the choice never depends on storage order.
    """
    if not candidates:
        return None
    target = len(issuer.strip())
    ordered = sorted(candidates, key=lambda s: str(s.id))
    ordered.sort(key=lambda s: s.updated_at, reverse=True)
    ordered.sort(key=lambda s: len(s.issuer.strip()) - target)
    return ordered[0]


def reconcile_service(
    repo: BillRepository,
    user_id: UUID,
    issuer: str,
    *,
    category: Category | None = None,
    logo_url: str | None = None,
    contract_number: str | None = None,
) -> ReconcileResult:
    """Reuse the user's matching service or create one.

    A match is any existing service whose issuer name contains ``issuer``
    case-insensitively. The reverse containment is not considered. A
    matched service without a logo gets ``logo_url`` backfilled.
    """
    existing = pick_service(repo.find_services_containing(user_id, issuer), issuer)

    if existing is not None:
        logger.info("Reusing service %s (%s) for %r", existing.id, existing.issuer, issuer)
        if logo_url and not existing.logo_url:
            repo.set_service_logo(existing.id, logo_url)
            logger.info("Backfilled logo for service %s", existing.id)
            return ReconcileResult(
                service=existing.model_copy(update={"logo_url": logo_url}),
                logo_backfilled=True,
            )
        return ReconcileResult(service=existing)

    service = repo.create_service(
        user_id,
        issuer,
        category=category,
        logo_url=logo_url,
        contract_number=contract_number,
    )
    logger.info("Created service %s for %r", service.id, issuer)
    return ReconcileResult(service=service, created=True)
