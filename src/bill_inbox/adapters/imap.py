"""IMAP adapter for the users' proxy mailbox."""

from __future__ import annotations

import hashlib
import imaplib
import logging
from datetime import UTC, datetime
from email import message_from_bytes
from email.header import decode_header
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, cast

from bill_inbox.models import Attachment, RawBill

if TYPE_CHECKING:
    from collections.abc import Iterator
    from email.message import Message

    from bill_inbox.config import ImapConfig

logger = logging.getLogger(__name__)


class ImapAdapter:
    """Fetch bill emails not yet turned into invoices."""

    def __init__(self, config: ImapConfig) -> None:
        self.config = config

    def fetch_unprocessed(self, processed_hashes: set[str]) -> Iterator[RawBill]:
        """Connect, walk the folder and yield bills whose hash is new."""
        conn: imaplib.IMAP4_SSL | None = None
        try:
            conn = self._connect()
            for msg_id in self._fetch_message_ids(conn):
                raw_email = self._fetch_message(conn, msg_id)
                if raw_email is None:
                    continue

                msg = message_from_bytes(raw_email)
                source_hash = self.source_hash(msg)
                if source_hash in processed_hashes:
                    logger.debug("Skipping already-ingested message %s", source_hash)
                    continue

                try:
                    bill = self._parse_message(msg, source_hash)
                except (ValueError, LookupError, UnicodeError):
                    logger.warning(
                        "Failed to parse message %s", source_hash, exc_info=True
                    )
                    continue
                yield bill
        finally:
            if conn is not None:
                try:
                    conn.logout()
                except (imaplib.IMAP4.error, OSError):
                    logger.debug("Error during IMAP logout", exc_info=True)

    def _connect(self) -> imaplib.IMAP4_SSL:
        conn = imaplib.IMAP4_SSL(self.config.host, self.config.port)
        conn.login(self.config.username, self.config.password)
        return conn

    def _fetch_message_ids(self, conn: imaplib.IMAP4_SSL) -> list[bytes]:
        """Select the folder read-only and return all sequence numbers."""
        conn.select(self.config.folder, readonly=True)
        _status, data = conn.search(None, "ALL")
        raw = data[0]
        if not raw:
            return []
        return cast("list[bytes]", raw.split())

    def _fetch_message(self, conn: imaplib.IMAP4_SSL, msg_id: bytes) -> bytes | None:
        _status, data = conn.fetch(msg_id.decode(), "(RFC822)")
        if not data or data[0] is None:
            return None
        part = data[0]
        if isinstance(part, tuple):
            return part[1]
        return None

    def _parse_message(self, msg: Message, source_hash: str) -> RawBill:
        subject = self._decode_header_value(msg.get("Subject", ""))
        sender = self._decode_header_value(msg.get("From", ""))

        date_str = msg.get("Date")
        email_date = parsedate_to_datetime(date_str) if date_str else None

        html_body, text_body, attachments = self._extract_body_and_attachments(msg)

        return RawBill(
            source_id=source_hash,
            subject=subject,
            sender=sender,
            date=email_date or datetime.now(tz=UTC),
            html_body=html_body,
            text_body=text_body,
            attachments=attachments,
        )

    @staticmethod
    def source_hash(msg: Message) -> str:
        """SHA-256 identifying the message, stored as the invoice's source hash.

        Hashes the Message-ID header when present, otherwise
        subject + date + sender.
        """
        message_id = msg.get("Message-ID")
        if message_id and message_id.strip():
            key = message_id.strip()
        else:
            key = f"{msg.get('Subject', '')}|{msg.get('Date', '')}|{msg.get('From', '')}"
        return hashlib.sha256(key.encode()).hexdigest()

    @staticmethod
    def _decode_header_value(value: str | None) -> str:
        """Decode an RFC 2047 encoded header value."""
        if not value:
            return ""
        decoded_parts: list[str] = []
        for data, charset in decode_header(value):
            if isinstance(data, bytes):
                decoded_parts.append(data.decode(charset or "utf-8", errors="replace"))
            else:
                decoded_parts.append(data)
        return "".join(decoded_parts)

    @staticmethod
    def _extract_body_and_attachments(
        msg: Message,
    ) -> tuple[str | None, str | None, list[Attachment]]:
        """Walk MIME tree and extract body content and attachments."""
        html_body: str | None = None
        text_body: str | None = None
        attachments: list[Attachment] = []

        if not msg.is_multipart():
            content_type = msg.get_content_type()
            charset = msg.get_content_charset() or "utf-8"
            raw_payload = msg.get_payload(decode=True)
            if raw_payload is None:
                return None, None, []
            payload = cast("bytes", raw_payload)
            if content_type == "text/html":
                html_body = payload.decode(charset, errors="replace")
            elif content_type == "text/plain":
                text_body = payload.decode(charset, errors="replace")
            elif content_type == "application/pdf":
                attachments.append(Attachment("invoice.pdf", content_type, payload))
            return html_body, text_body, attachments

        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue

            raw_payload = part.get_payload(decode=True)
            if raw_payload is None:
                continue
            payload = cast("bytes", raw_payload)

            content_type = part.get_content_type()
            disposition = str(part.get("Content-Disposition", ""))
            filename = part.get_filename()

            if filename or "attachment" in disposition.lower():
                attachments.append(
                    Attachment(
                        filename=filename or "unnamed",
                        content_type=content_type,
                        data=payload,
                    )
                )
            elif content_type == "text/html" and html_body is None:
                charset = part.get_content_charset() or "utf-8"
                html_body = payload.decode(charset, errors="replace")
            elif content_type == "text/plain" and text_body is None:
                charset = part.get_content_charset() or "utf-8"
                text_body = payload.decode(charset, errors="replace")
            elif content_type.startswith("image/"):
                # inline image, keyed by Content-ID for cid: lookups
                content_id = part.get("Content-ID", "")
                name = content_id.strip("<>") if content_id else "inline-image"
                attachments.append(Attachment(name, content_type, payload))

        return html_body, text_body, attachments
