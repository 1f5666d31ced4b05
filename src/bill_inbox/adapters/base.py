"""Bill source adapter protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterator

    from bill_inbox.models import RawBill


@runtime_checkable
class BillSource(Protocol):
    """Protocol for sources of forwarded bill emails."""

    def fetch_unprocessed(self, processed_hashes: set[str]) -> Iterator[RawBill]: ...
