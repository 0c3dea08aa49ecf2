"""Outbound MIME composition. Builds the base64url raw message Gmail's send API expects."""

from __future__ import annotations

import base64
import logging
import re
import secrets
import time
from collections.abc import Iterable
from email.header import Header
from email.utils import formatdate, make_msgid

from src.compose.documents import DocumentNotFound, DocumentStore
from src.compose.types import (
    DEFAULT_MIME_TYPE,
    MAX_ATTACHMENT_BYTES,
    MAX_MESSAGE_BYTES,
    AttachmentSource,
    DocumentAttachment,
    InlineAttachment,
    OutboundMessageRequest,
    ResolvedAttachment,
)
from src.processing.decoder import b64url_encode

logger = logging.getLogger(__name__)

CRLF = "\r\n"
_MIME_LINE_LENGTH = 76
_NEWLINE_RE = re.compile(r"\r?\n")
_LINE_BREAK_RE = re.compile(r"[\r\n]")

# Transparency headers; not load-bearing for delivery semantics.
_EXTRA_HEADERS: tuple[tuple[str, str], ...] = (
    ("X-Mailer", "Mail Sync Engine"),
    ("X-Priority", "3"),
    ("X-MSMail-Priority", "Normal"),
    ("Importance", "Normal"),
    ("Auto-Submitted", "no"),
    ("Precedence", "bulk"),
    ("X-Auto-Response-Suppress", "All"),
)


# ── Errors ─────────────────────────────────────────────────────────────────────


class ComposeError(Exception):
    """Base class for failures that abort a send before any network call."""


class AttachmentUnreadable(ComposeError):
    """One or more attachment sources could not produce bytes.

    ``failures`` maps each failing filename to the reason.
    """

    def __init__(self, failures: dict[str, str]) -> None:
        names = ", ".join(f"{name} ({reason})" for name, reason in failures.items())
        super().__init__(f"Attachment(s) could not be read: {names}")
        self.failures = failures


class AttachmentTooLarge(ComposeError):
    """One or more attachments exceed the per-attachment ceiling."""

    def __init__(self, filenames: list[str], limit: int = MAX_ATTACHMENT_BYTES) -> None:
        super().__init__(
            f"Attachment(s) exceed the {limit // (1024 * 1024)}MB limit: {', '.join(filenames)}"
        )
        self.filenames = filenames
        self.limit = limit


class InvalidHeader(ComposeError):
    """A header value contains a line break and would inject extra headers."""

    def __init__(self, header: str) -> None:
        super().__init__(f"{header} must not contain line breaks")
        self.header = header


class SizeLimitExceeded(ComposeError):
    """The assembled raw message exceeds the provider's size ceiling."""

    def __init__(self, size: int, limit: int = MAX_MESSAGE_BYTES) -> None:
        super().__init__(
            f"Final message size ({size / (1024 * 1024):.1f}MB) exceeds the "
            f"{limit // (1024 * 1024)}MB limit"
        )
        self.size = size
        self.limit = limit


# ── Encoding helpers ───────────────────────────────────────────────────────────


def check_attachment_sizes(
    sources: Iterable[AttachmentSource | ResolvedAttachment],
    limit: int = MAX_ATTACHMENT_BYTES,
) -> None:
    """Raise AttachmentTooLarge naming every attachment above ``limit`` bytes."""
    oversized = [
        src.filename
        for src in sources
        if (src.size if isinstance(src, ResolvedAttachment) else src.declared_size) > limit
    ]
    if oversized:
        raise AttachmentTooLarge(oversized, limit)


def encode_quoted_printable_html(content: str) -> str:
    """Minimal quoted-printable for HTML bodies: escape ``=`` and use CRLF line ends."""
    return _NEWLINE_RE.sub(CRLF, content.replace("=", "=3D"))


def wrap_base64(data: bytes) -> str:
    """Standard base64 wrapped at 76 characters per line."""
    encoded = base64.b64encode(data).decode("ascii")
    return CRLF.join(
        encoded[i:i + _MIME_LINE_LENGTH] for i in range(0, len(encoded), _MIME_LINE_LENGTH)
    )


def check_header_value(header: str, value: str | None) -> None:
    """Raise InvalidHeader if ``value`` would break out of its header line."""
    if value and _LINE_BREAK_RE.search(value):
        raise InvalidHeader(header)


def encode_header_value(value: str) -> str:
    """RFC 2047-encode non-ASCII header values; ASCII passes through."""
    if value.isascii():
        return value
    return Header(value, "utf-8").encode()


def _quote_filename(filename: str) -> str:
    return filename.replace("\\", "\\\\").replace('"', '\\"')


def new_boundary(body: str = "") -> str:
    """Time + random multipart boundary guaranteed absent from ``body``."""
    while True:
        boundary = f"----=_Part_{time.time_ns()}_{secrets.token_hex(12)}"
        if boundary not in body:
            return boundary


# ── Composer ───────────────────────────────────────────────────────────────────


class MessageComposer:
    """Builds complete multipart/mixed messages for Gmail's raw send endpoint.

    Document-reference attachments are resolved through ``document_store``
    before composition; any unreadable attachment aborts the send.

    Usage::

        composer = MessageComposer(LocalDocumentStore("data/documents"))
        raw = await composer.compose(request, "me@example.com")
        await gmail.send_raw(raw, request.thread_id)
    """

    def __init__(
        self,
        document_store: DocumentStore | None = None,
        max_message_bytes: int = MAX_MESSAGE_BYTES,
        max_attachment_bytes: int = MAX_ATTACHMENT_BYTES,
    ) -> None:
        self._documents = document_store
        self._max_message_bytes = max_message_bytes
        self._max_attachment_bytes = max_attachment_bytes

    async def compose(self, request: OutboundMessageRequest, sender_address: str) -> str:
        """Return the whole message as unpadded base64url.

        Raises:
            AttachmentTooLarge: an attachment is above the per-file limit.
            AttachmentUnreadable: an attachment source produced no bytes.
            SizeLimitExceeded: the assembled message is above the total limit.
            InvalidHeader: a header value contains a line break.
        """
        check_attachment_sizes(request.attachments, self._max_attachment_bytes)
        attachments = await self.resolve_attachments(request.attachments)
        check_attachment_sizes(attachments, self._max_attachment_bytes)

        message = self.build_message(request, sender_address, attachments)
        encoded = message.encode("utf-8")
        if len(encoded) > self._max_message_bytes:
            raise SizeLimitExceeded(len(encoded), self._max_message_bytes)

        logger.info(
            "Composed message to=%s attachments=%d size=%d bytes",
            request.to,
            len(attachments),
            len(encoded),
        )
        return b64url_encode(encoded)

    async def resolve_attachments(
        self, sources: Iterable[AttachmentSource]
    ) -> list[ResolvedAttachment]:
        """Turn every source into bytes; collect all failures before raising."""
        resolved: list[ResolvedAttachment] = []
        failures: dict[str, str] = {}

        for source in sources:
            if isinstance(source, InlineAttachment):
                if not source.data:
                    failures[source.filename] = "no data"
                    continue
                resolved.append(
                    ResolvedAttachment(source.filename, source.mime_type or DEFAULT_MIME_TYPE, source.data)
                )
            elif isinstance(source, DocumentAttachment):
                if self._documents is None:
                    failures[source.name] = "no document store configured"
                    continue
                try:
                    data = await self._documents.fetch(source.file_path)
                except DocumentNotFound as exc:
                    logger.error("Document %s unreadable: %s", source.name, exc)
                    failures[source.name] = str(exc)
                    continue
                if not data:
                    failures[source.name] = "empty document"
                    continue
                resolved.append(
                    ResolvedAttachment(source.name, source.mime_type or DEFAULT_MIME_TYPE, data)
                )

        if failures:
            raise AttachmentUnreadable(failures)
        return resolved

    def build_message(
        self,
        request: OutboundMessageRequest,
        sender_address: str,
        attachments: list[ResolvedAttachment],
        boundary: str | None = None,
    ) -> str:
        """Assemble headers and MIME parts into the raw RFC 2822 text."""
        for header, value in (
            ("From", sender_address),
            ("To", request.to),
            ("Reply-To", request.reply_to),
            ("Subject", request.subject),
        ):
            check_header_value(header, value)
        for attachment in attachments:
            check_header_value("Attachment filename", attachment.filename)
            check_header_value("Attachment content type", attachment.mime_type)

        boundary = boundary or new_boundary(request.content)
        domain = sender_address.rpartition("@")[2] or "localhost"

        headers = [
            f"From: {sender_address}",
            f"To: {request.to}",
            f"Reply-To: {request.reply_to or sender_address}",
            f"Subject: {encode_header_value(request.subject)}",
            f"Date: {formatdate(usegmt=True)}",
            f"Message-ID: {make_msgid(domain=domain)}",
            "MIME-Version: 1.0",
            f'Content-Type: multipart/mixed; boundary="{boundary}"',
        ]
        headers.extend(f"{name}: {value}" for name, value in _EXTRA_HEADERS)
        headers.extend(["", "This is a multi-part message in MIME format.", ""])

        parts = [
            CRLF.join([
                f"--{boundary}",
                "Content-Type: text/html; charset=utf-8",
                "Content-Transfer-Encoding: quoted-printable",
                "Content-Disposition: inline",
                "",
                encode_quoted_printable_html(request.content),
                "",
            ])
        ]
        for attachment in attachments:
            parts.append(CRLF.join([
                f"--{boundary}",
                f"Content-Type: {attachment.mime_type}",
                f'Content-Disposition: attachment; filename="{_quote_filename(attachment.filename)}"',
                "Content-Transfer-Encoding: base64",
                "",
                wrap_base64(attachment.data),
                "",
            ]))
        parts.append(f"--{boundary}--")

        return CRLF.join(headers) + CRLF + CRLF.join(parts)
