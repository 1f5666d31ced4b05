"""Database connection helper."""

from __future__ import annotations

from pathlib import Path

import psycopg
from psycopg.rows import dict_row

from bill_inbox.config import get_database_url


def get_connection() -> psycopg.Connection[dict[str, object]]:
    """Create and return a new database connection.

    Autocommit is on; multi-statement work opens an explicit
    ``conn.transaction()`` block.
    """
    return psycopg.connect(get_database_url(), row_factory=dict_row, autocommit=True)


def load_schema() -> str:
    """Return the DDL for the services and invoices tables."""
    return Path(__file__).with_name("schema.sql").read_text(encoding="utf-8")


def init_schema(conn: psycopg.Connection[dict[str, object]]) -> None:
    """Create the tables if they do not exist yet."""
    with conn.transaction():
        conn.execute(load_schema())  # type: ignore[arg-type]
