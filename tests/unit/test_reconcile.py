"""Tests for bill_inbox.reconcile."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from bill_inbox.models import Category, Service
from bill_inbox.reconcile import pick_service, reconcile_service

if TYPE_CHECKING:
    from tests.conftest import InMemoryBillRepository

LOGO = "https://img.logo.dev/edp.pt?format=webp&retina=true&size=128"


def _service(issuer: str, updated: int, service_id: str | None = None) -> Service:
    stamp = datetime(2025, 1, updated, tzinfo=UTC)
    return Service(
        id=UUID(service_id) if service_id else uuid4(),
        user_id=uuid4(),
        issuer=issuer,
        created_at=stamp,
        updated_at=stamp,
    )


class TestReconcileService:
    """Tests for reconcile_service."""

    def test_creates_service_when_none_match(
        self, repo: InMemoryBillRepository, user_id: UUID
    ) -> None:
        result = reconcile_service(
            repo,
            user_id,
            "EDP Comercial",
            category=Category.ELECTRICITY,
            logo_url=LOGO,
            contract_number="CT-1",
        )

        assert result.created is True
        assert result.logo_backfilled is False
        assert result.service.issuer == "EDP Comercial"
        assert result.service.category == Category.ELECTRICITY
        assert result.service.logo_url == LOGO
        assert result.service.contract_number == "CT-1"
        assert list(repo.services) == [result.service.id]

    def test_reuses_exact_match(
        self, repo: InMemoryBillRepository, user_id: UUID
    ) -> None:
        existing = repo.add_service(user_id, "EDP", logo_url=LOGO)

        result = reconcile_service(repo, user_id, "EDP", logo_url=LOGO)

        assert result.created is False
        assert result.service.id == existing.id
        assert len(repo.services) == 1
        assert repo.logo_updates == []

    def test_reuses_service_containing_issuer(
        self, repo: InMemoryBillRepository, user_id: UUID
    ) -> None:
        existing = repo.add_service(user_id, "EDP Comercial")

        result = reconcile_service(repo, user_id, "edp")

        assert result.service.id == existing.id
        assert result.created is False

    def test_reverse_containment_creates_new_service(
        self, repo: InMemoryBillRepository, user_id: UUID
    ) -> None:
        repo.add_service(user_id, "EDP")

        result = reconcile_service(repo, user_id, "EDP Comercial")

        assert result.created is True
        assert len(repo.services) == 2

    def test_other_users_services_ignored(
        self, repo: InMemoryBillRepository, user_id: UUID
    ) -> None:
        repo.add_service(uuid4(), "MEO")

        result = reconcile_service(repo, user_id, "MEO")

        assert result.created is True

    def test_backfills_missing_logo(
        self, repo: InMemoryBillRepository, user_id: UUID
    ) -> None:
        existing = repo.add_service(user_id, "EDP")

        result = reconcile_service(repo, user_id, "EDP", logo_url=LOGO)

        assert result.logo_backfilled is True
        assert result.service.logo_url == LOGO
        assert repo.logo_updates == [(existing.id, LOGO)]
        assert repo.services[existing.id].logo_url == LOGO

    def test_no_backfill_without_resolved_logo(
        self, repo: InMemoryBillRepository, user_id: UUID
    ) -> None:
        repo.add_service(user_id, "Prosegur")

        result = reconcile_service(repo, user_id, "Prosegur", logo_url=None)

        assert result.logo_backfilled is False
        assert repo.logo_updates == []

    def test_existing_logo_not_overwritten(
        self, repo: InMemoryBillRepository, user_id: UUID
    ) -> None:
        repo.add_service(user_id, "EDP", logo_url="https://example.com/custom.png")

        result = reconcile_service(repo, user_id, "EDP", logo_url=LOGO)

        assert result.service.logo_url == "https://example.com/custom.png"
        assert repo.logo_updates == []


class TestPickService:
    """Tests for the deterministic tie-break."""

    def test_empty(self) -> None:
        assert pick_service([], "EDP") is None

    def test_closest_length_wins(self) -> None:
        long_name = _service("EDP Comercial Serviço Universal", updated=9)
        short_name = _service("EDP Comercial", updated=1)

        assert pick_service([long_name, short_name], "EDP") is short_name

    def test_most_recent_breaks_length_tie(self) -> None:
        older = _service("EDP Gás", updated=1)
        newer = _service("EDP Luz", updated=5)

        assert pick_service([older, newer], "EDP") is newer

    def test_lowest_id_breaks_full_tie(self) -> None:
        a = _service("EDP Gás", updated=3, service_id="00000000-0000-0000-0000-00000000000a")
        b = _service("EDP Luz", updated=3, service_id="00000000-0000-0000-0000-00000000000b")

        assert pick_service([b, a], "EDP") is a
