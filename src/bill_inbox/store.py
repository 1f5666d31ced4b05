"""Source document store abstraction and local filesystem implementation."""

from __future__ import annotations

import mimetypes
from typing import TYPE_CHECKING, Protocol

from slugify import slugify

if TYPE_CHECKING:
    from datetime import date
    from pathlib import Path
    from uuid import UUID

_EXTENSIONS = {
    "application/pdf": ".pdf",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/tiff": ".tiff",
    "image/webp": ".webp",
}


class DocumentStore(Protocol):
    """Protocol for invoice source document storage backends."""

    def save(
        self,
        user_id: UUID,
        due_date: date,
        issuer: str,
        amount_cents: int,
        data: bytes,
        media_type: str,
    ) -> str: ...

    def get_path(self, relative_path: str) -> Path: ...

    def exists(self, relative_path: str) -> bool: ...


class LocalDocumentStore:
    """Local filesystem implementation of DocumentStore.

    Directory layout:
    {root}/{user}/{YYYY}/{MM}/{YYYY-MM-DD}__{issuer}__{cents}{ext}
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def save(
        self,
        user_id: UUID,
        due_date: date,
        issuer: str,
        amount_cents: int,
        data: bytes,
        media_type: str,
    ) -> str:
        """Save the document and return its path relative to the store root."""
        slug = self._slugify_issuer(issuer)
        ext = self._extension_for(media_type)
        dir_path = (
            self.root / str(user_id) / str(due_date.year) / f"{due_date.month:02d}"
        )
        dir_path.mkdir(parents=True, exist_ok=True)

        stem = f"{due_date.isoformat()}__{slug}__{amount_cents}"
        file_path = dir_path / f"{stem}{ext}"

        # Handle duplicates by appending numeric suffix
        counter = 1
        while file_path.exists():
            counter += 1
            file_path = dir_path / f"{stem}_{counter}{ext}"

        file_path.write_bytes(data)
        return file_path.relative_to(self.root).as_posix()

    def get_path(self, relative_path: str) -> Path:
        """Return the absolute path for a relative store path."""
        return self.root / relative_path

    def exists(self, relative_path: str) -> bool:
        """Check whether a file exists in the store."""
        return (self.root / relative_path).exists()

    @staticmethod
    def _slugify_issuer(issuer: str) -> str:
        """Convert issuer name to a filesystem-safe slug, max 50 chars."""
        return str(slugify(issuer, max_length=50)) or "unknown"

    @staticmethod
    def _extension_for(media_type: str) -> str:
        return _EXTENSIONS.get(media_type) or mimetypes.guess_extension(media_type) or ".bin"
