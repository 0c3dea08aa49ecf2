"""Types for the inbound message pipeline: MIME part tree, attachments, processed emails."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Gmail system label marking a message as unread.
UNREAD_LABEL = "UNREAD"


# ── MIME part tree ─────────────────────────────────────────────────────────────


@dataclass
class MimePart:
    """One node of a provider message's MIME tree.

    A leaf carries either inline ``body_data`` (base64url text) or an
    ``attachment_id`` handle; a branch carries child ``parts`` only.
    """

    mime_type: str = ""
    filename: str = ""
    body_data: str = ""
    attachment_id: str = ""
    size: int = 0
    parts: list[MimePart] = field(default_factory=list)

    @property
    def is_attachment(self) -> bool:
        return bool(self.filename and self.attachment_id)

    @property
    def is_branch(self) -> bool:
        return bool(self.parts)

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> MimePart:
        """Build a part tree from the provider's ``payload`` dict.

        Uses an explicit stack so deeply nested payloads cannot exhaust the
        interpreter's recursion limit.
        """
        root = cls()
        stack: list[tuple[dict[str, Any], MimePart]] = [(payload or {}, root)]
        while stack:
            raw, node = stack.pop()
            body = raw.get("body") or {}
            node.mime_type = str(raw.get("mimeType") or "")
            node.filename = str(raw.get("filename") or "")
            node.body_data = str(body.get("data") or "")
            node.attachment_id = str(body.get("attachmentId") or "")
            node.size = int(body.get("size") or 0)
            for child_raw in raw.get("parts") or []:
                if not isinstance(child_raw, dict):
                    continue
                child = cls()
                node.parts.append(child)
                stack.append((child_raw, child))
        return root


# ── Processed message ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Attachment:
    """Inbound attachment metadata; bytes are fetched on demand via attachment_id."""

    filename: str
    mime_type: str
    size: int
    attachment_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "mimeType": self.mime_type,
            "size": self.size,
            "attachmentId": self.attachment_id,
        }


@dataclass(frozen=True)
class ProcessedEmail:
    """A provider message reduced to display fields and one canonical HTML body.

    Created once per raw message by ``process_message`` and never mutated.
    ``internal_date`` is the provider's receipt timestamp in epoch
    milliseconds, when the provider supplied one.
    """

    id: str
    thread_id: str
    snippet: str
    subject: str
    sender: str
    to: str
    date: str
    content: str = ""
    labels: frozenset[str] = field(default_factory=frozenset)
    attachments: tuple[Attachment, ...] = ()
    internal_date: int | None = None

    @property
    def is_read(self) -> bool:
        return UNREAD_LABEL not in self.labels

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "snippet": self.snippet,
            "subject": self.subject,
            "from": self.sender,
            "to": self.to,
            "date": self.date,
            "content": self.content,
            "unread": not self.is_read,
            "labels": sorted(self.labels),
            "attachments": [a.to_dict() for a in self.attachments],
        }
