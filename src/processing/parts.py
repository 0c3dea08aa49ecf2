"""MIME part walking. Turns a provider message into a ProcessedEmail."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from src.processing.decoder import decode_body
from src.processing.types import Attachment, MimePart, ProcessedEmail
from src.threads.dates import from_epoch_millis

logger = logging.getLogger(__name__)

#: Substrings that mark tracking/redirect links in marketing mail.
#: Approximate by nature; callers may pass their own list.
DEFAULT_MARKETING_SIGNATURES: tuple[str, ...] = ("link.", "track", "click?", "[https://")

_HTML = "text/html"
_TEXT = "text/plain"


def escape_plain_text(text: str) -> str:
    """Render plain text as safe markup: escape &, <, >, " and keep line breaks."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("\n", "<br>")
        .strip()
    )


class PartWalker:
    """Walks a MIME part tree, collecting attachments and one canonical body.

    Usage::

        walker = PartWalker()
        content, attachments = walker.extract_content(MimePart.from_payload(payload))
    """

    def __init__(self, marketing_signatures: Iterable[str] = DEFAULT_MARKETING_SIGNATURES) -> None:
        self._signatures = tuple(s for s in marketing_signatures if s)

    def extract_content(self, root: MimePart) -> tuple[str, list[Attachment]]:
        """Return ``(content, attachments)`` for a message's root part.

        Parts are visited depth-first in document order. For each of
        text/plain and text/html the last decoded part wins.
        """
        attachments: list[Attachment] = []
        text = ""
        html = ""

        if not root.is_branch:
            if root.body_data:
                decoded = decode_body(root.body_data)
                if root.mime_type == _HTML:
                    html = decoded
                else:
                    text = decoded
            return self._select(text, html), attachments

        stack: list[MimePart] = list(reversed(root.parts))
        while stack:
            part = stack.pop()
            if part.is_attachment:
                attachments.append(
                    Attachment(
                        filename=part.filename,
                        mime_type=part.mime_type,
                        size=part.size,
                        attachment_id=part.attachment_id,
                    )
                )
                continue
            if part.body_data:
                decoded = decode_body(part.body_data)
                if part.mime_type == _HTML:
                    html = decoded
                elif part.mime_type == _TEXT:
                    text = decoded
            stack.extend(reversed(part.parts))

        return self._select(text, html), attachments

    def is_marketing(self, text: str, html: str) -> bool:
        return any(sig in text or sig in html for sig in self._signatures)

    def _select(self, text: str, html: str) -> str:
        """Pick the body to display.

        Tracked-link mail keeps its HTML layout; personal mail renders as
        escaped plain text; HTML-only mail falls back to its HTML.
        """
        if html.strip() and self.is_marketing(text, html):
            return html.strip()
        if text.strip():
            return escape_plain_text(text)
        if html.strip():
            return html.strip()
        return ""


def _header_map(payload: dict[str, Any]) -> dict[str, str]:
    """Lower-cased header name → first value."""
    headers: dict[str, str] = {}
    for header in payload.get("headers") or []:
        if not isinstance(header, dict):
            continue
        name = str(header.get("name", "")).lower()
        if name and name not in headers:
            headers[name] = str(header.get("value", ""))
    return headers


def _internal_date(raw: Any) -> int | None:
    """Provider receipt time in epoch millis, or None when missing or out of range."""
    if raw in (None, ""):
        return None
    try:
        millis = int(raw)
        from_epoch_millis(millis)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.debug("Ignoring unusable internalDate %r", raw)
        return None
    return millis


def process_message(message: dict[str, Any], walker: PartWalker | None = None) -> ProcessedEmail:
    """Map one provider message dict to a ProcessedEmail."""
    walker = walker or PartWalker()
    payload = message.get("payload") or {}
    headers = _header_map(payload)
    content, attachments = walker.extract_content(MimePart.from_payload(payload))

    return ProcessedEmail(
        id=str(message.get("id", "")),
        thread_id=str(message.get("threadId", "")),
        snippet=str(message.get("snippet", "")),
        subject=headers.get("subject", ""),
        sender=headers.get("from", ""),
        to=headers.get("to", ""),
        date=headers.get("date", ""),
        content=content,
        labels=frozenset(str(label) for label in message.get("labelIds") or []),
        attachments=tuple(attachments),
        internal_date=_internal_date(message.get("internalDate")),
    )
