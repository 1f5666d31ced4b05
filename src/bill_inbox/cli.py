"""CLI entry point for bill-inbox."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from uuid import UUID

import click

from bill_inbox.config import get_imap_config, get_logo_token, get_store_path
from bill_inbox.errors import BillInboxError
from bill_inbox.extraction import create_backend, sniff_media_type
from bill_inbox.issuers import categorize, logo_url_for, resolve_issuer
from bill_inbox.models import InboundDocument
from bill_inbox.pipeline import analyze_document, ingest_mailbox, process_document


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Bill inbox: turn invoices into tracked services and payments."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("bill_inbox.api:app", host=host, port=port)


@cli.command("init-db")
def init_db() -> None:
    """Create the services and invoices tables."""
    from bill_inbox.db import get_connection, init_schema

    with get_connection() as conn:
        init_schema(conn)
    click.echo("Schema ready.")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--backend", type=click.Choice(["azure", "llm"]), default=None)
def parse(file: Path, backend: str | None) -> None:
    """Extract payment details from an invoice without storing anything."""
    document = _read_document(file)
    try:
        parsed = analyze_document(
            document, create_backend(backend), logo_token=get_logo_token()
        )
    except BillInboxError as exc:
        raise click.ClickException(f"{exc.user_message} ({exc})") from exc
    click.echo(json.dumps(parsed.to_response(), indent=2, ensure_ascii=False))


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--user", "user_id", required=True, type=click.UUID)
@click.option("--backend", type=click.Choice(["azure", "llm"]), default=None)
def upload(file: Path, user_id: UUID, backend: str | None) -> None:
    """Parse an invoice and file it under the user's matching service."""
    from bill_inbox.db import get_connection
    from bill_inbox.repository import PostgresBillRepository
    from bill_inbox.store import LocalDocumentStore

    document = _read_document(file)
    try:
        with get_connection() as conn:
            outcome = process_document(
                document,
                user_id,
                backend=create_backend(backend),
                repo=PostgresBillRepository(conn),
                store=LocalDocumentStore(get_store_path()),
                logo_token=get_logo_token(),
            )
    except BillInboxError as exc:
        raise click.ClickException(f"{exc.user_message} ({exc})") from exc

    verb = "Created" if outcome.service_created else "Matched"
    click.echo(f"{verb} service {outcome.service.id} ({outcome.service.issuer})")
    click.echo(
        f"Invoice {outcome.invoice.id}: {outcome.invoice.amount_cents} cents "
        f"due {outcome.invoice.due_date.isoformat()}"
    )


@cli.command()
@click.option("--user", "user_id", required=True, type=click.UUID)
@click.option("--backend", type=click.Choice(["azure", "llm"]), default=None)
def ingest(user_id: UUID, backend: str | None) -> None:
    """Ingest new bills from the proxy mailbox."""
    from bill_inbox.adapters.imap import ImapAdapter
    from bill_inbox.db import get_connection
    from bill_inbox.repository import PostgresBillRepository
    from bill_inbox.store import LocalDocumentStore

    try:
        source = ImapAdapter(get_imap_config())
        extraction_backend = create_backend(backend)
        with get_connection() as conn:
            report = ingest_mailbox(
                source,
                user_id,
                backend=extraction_backend,
                repo=PostgresBillRepository(conn),
                store=LocalDocumentStore(get_store_path()),
                logo_token=get_logo_token(),
            )
    except BillInboxError as exc:
        raise click.ClickException(f"{exc.user_message} ({exc})") from exc

    click.echo(f"Ingested {len(report.processed)} bill(s), {len(report.failed)} failed.")
    for source_id, message in report.failed:
        click.echo(f"  {source_id[:12]}: {message}", err=True)


@cli.command()
@click.argument("issuer")
def resolve(issuer: str) -> None:
    """Show which known provider an issuer name resolves to."""
    known = resolve_issuer(issuer)
    if known is None:
        click.echo("no match")
        return
    click.echo(f"{known.name} ({known.domain})")
    click.echo(logo_url_for(issuer, get_logo_token()))


@cli.command("categorize")
@click.argument("issuer")
def categorize_cmd(issuer: str) -> None:
    """Guess the category of an issuer."""
    result = categorize(issuer)
    click.echo(f"{result.category}: {result.description}")


def _read_document(file: Path) -> InboundDocument:
    data = file.read_bytes()
    media_type = sniff_media_type(data)
    if media_type is None:
        msg = f"{file.name} is not a PDF or a supported image"
        raise click.ClickException(msg)
    return InboundDocument(data=data, media_type=media_type, filename=file.name)
