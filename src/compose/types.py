"""Outbound message request types."""

from __future__ import annotations

from dataclasses import dataclass, field

#: Provider ceiling for one attachment, enforced before anything is uploaded.
MAX_ATTACHMENT_BYTES = 20 * 1024 * 1024

#: Provider ceiling for the fully assembled raw message.
MAX_MESSAGE_BYTES = 25 * 1024 * 1024

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class InlineAttachment:
    """An attachment whose bytes arrive with the request."""

    filename: str
    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def declared_size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class DocumentAttachment:
    """A reference to a stored document that must be fetched before composing."""

    name: str
    file_path: str
    mime_type: str | None = None
    file_size: int | None = None
    id: str | None = None

    @property
    def filename(self) -> str:
        return self.name

    @property
    def declared_size(self) -> int:
        return self.file_size or 0


AttachmentSource = InlineAttachment | DocumentAttachment


@dataclass(frozen=True)
class ResolvedAttachment:
    """Attachment bytes ready to be written as a MIME part."""

    filename: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class OutboundMessageRequest:
    """A logical send request; consumed once by MessageComposer."""

    to: str
    subject: str
    content: str
    thread_id: str | None = None
    reply_to: str | None = None
    attachments: list[AttachmentSource] = field(default_factory=list)
