"""Configuration via environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from bill_inbox.errors import ConfigurationError

load_dotenv()

EXTRACTION_BACKENDS = ("azure", "llm")


@dataclass(frozen=True)
class ImapConfig:
    """IMAP connection configuration for the proxy mailbox."""

    host: str
    username: str
    password: str
    port: int = 993
    folder: str = "INBOX"


@dataclass(frozen=True)
class AzureConfig:
    """Azure Document Intelligence settings."""

    endpoint: str
    key: str
    api_version: str = "2023-07-31"
    poll_interval: float = 1.0
    max_poll_attempts: int = 30


def get_database_url() -> str:
    """Return the DATABASE_URL from the environment."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        msg = "DATABASE_URL environment variable is required"
        raise ConfigurationError(msg)
    return url


def get_store_path() -> Path:
    """Return the BILL_STORE_PATH, defaulting to ./data/bills.

    Always resolves to an absolute path to avoid issues if the
    working directory changes during execution.
    """
    return Path(os.environ.get("BILL_STORE_PATH", "./data/bills")).resolve()


def get_imap_config() -> ImapConfig:
    """Build IMAP configuration from environment variables.

    Required: IMAP_HOST, IMAP_USERNAME, IMAP_PASSWORD
    Optional: IMAP_PORT (default 993), IMAP_FOLDER (default INBOX)
    """
    host = os.environ.get("IMAP_HOST")
    username = os.environ.get("IMAP_USERNAME")
    password = os.environ.get("IMAP_PASSWORD")
    _require(IMAP_HOST=host, IMAP_USERNAME=username, IMAP_PASSWORD=password)

    return ImapConfig(
        host=host,  # type: ignore[arg-type]
        username=username,  # type: ignore[arg-type]
        password=password,  # type: ignore[arg-type]
        port=int(os.environ.get("IMAP_PORT", "993")),
        folder=os.environ.get("IMAP_FOLDER", "INBOX"),
    )


def get_azure_config() -> AzureConfig:
    """Build Azure Document Intelligence configuration.

    Required: AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT, AZURE_DOCUMENT_INTELLIGENCE_KEY
    Optional: AZURE_API_VERSION, AZURE_POLL_INTERVAL, AZURE_MAX_POLL_ATTEMPTS
    """
    endpoint = os.environ.get("AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT")
    key = os.environ.get("AZURE_DOCUMENT_INTELLIGENCE_KEY")
    _require(
        AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT=endpoint,
        AZURE_DOCUMENT_INTELLIGENCE_KEY=key,
    )

    max_attempts = int(os.environ.get("AZURE_MAX_POLL_ATTEMPTS", "30"))
    if max_attempts < 1:
        msg = "AZURE_MAX_POLL_ATTEMPTS must be at least 1"
        raise ConfigurationError(msg)

    return AzureConfig(
        endpoint=endpoint.rstrip("/"),  # type: ignore[union-attr]
        key=key,  # type: ignore[arg-type]
        api_version=os.environ.get("AZURE_API_VERSION", "2023-07-31"),
        poll_interval=float(os.environ.get("AZURE_POLL_INTERVAL", "1.0")),
        max_poll_attempts=max_attempts,
    )


def get_extraction_backend() -> str:
    """Return the configured extraction backend name (azure or llm)."""
    backend = os.environ.get("EXTRACTION_BACKEND", "azure").strip().lower()
    if backend not in EXTRACTION_BACKENDS:
        msg = (
            f"EXTRACTION_BACKEND must be one of {', '.join(EXTRACTION_BACKENDS)}, "
            f"got {backend!r}"
        )
        raise ConfigurationError(msg)
    return backend


def get_anthropic_api_key() -> str:
    """Return the ANTHROPIC_API_KEY from the environment."""
    key = os.environ.get("ANTHROPIC_API_KEY")
    if not key:
        msg = "ANTHROPIC_API_KEY environment variable is required"
        raise ConfigurationError(msg)
    return key


def get_llm_model() -> str:
    """Return the LLM model identifier.

    Defaults to claude-haiku-4-5-20251001.
    """
    return os.environ.get("LLM_MODEL", "claude-haiku-4-5-20251001")


def get_logo_token() -> str | None:
    """Return the logo.dev publishable token, if configured."""
    return os.environ.get("LOGO_DEV_TOKEN") or None


def _require(**values: str | None) -> None:
    missing = [name for name, value in values.items() if not value]
    if missing:
        msg = f"Required environment variables not set: {', '.join(missing)}"
        raise ConfigurationError(msg)
