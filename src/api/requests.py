"""Action request models, one pydantic model per action, discriminated on ``action``."""

from __future__ import annotations

import base64
import binascii
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from src.compose.types import (
    DEFAULT_MIME_TYPE,
    DocumentAttachment,
    InlineAttachment,
    OutboundMessageRequest,
)


class BadRequest(Exception):
    """Raised when an action payload fails validation; nothing is executed."""


def _single_line(value: str | None) -> str | None:
    if value is not None and ("\r" in value or "\n" in value):
        raise ValueError("must not contain line breaks")
    return value


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GetEmailsRequest(_Request):
    action: Literal["getEmails"]
    query: str | None = None
    max_results: int | None = Field(default=None, alias="maxResults", ge=1, le=200)
    page_token: str | None = Field(default=None, alias="pageToken")


class SearchEmailsRequest(_Request):
    action: Literal["searchEmails"]
    query: str = Field(min_length=1)


class MarkAsReadRequest(_Request):
    action: Literal["markAsRead"]
    message_id: str | None = Field(default=None, alias="messageId")
    thread_id: str | None = Field(default=None, alias="threadId")

    @model_validator(mode="after")
    def _needs_target(self) -> MarkAsReadRequest:
        if not self.message_id and not self.thread_id:
            raise ValueError("messageId or threadId is required")
        return self


class InlineAttachmentPayload(_Request):
    name: str
    data: str  # standard base64
    mime_type: str = Field(default=DEFAULT_MIME_TYPE, alias="mimeType")
    size: int = Field(ge=0)

    check_single_line = field_validator("name", "mime_type")(_single_line)


class DocumentAttachmentPayload(_Request):
    id: str | None = None
    name: str
    file_path: str
    mime_type: str | None = None
    file_size: int | None = None

    check_single_line = field_validator("name", "mime_type")(_single_line)


class SendEmailRequest(_Request):
    action: Literal["sendEmail"]
    to: str = Field(min_length=1)
    subject: str
    content: str
    reply_to: str | None = Field(default=None, alias="replyTo")
    thread_id: str | None = Field(default=None, alias="threadId")
    attachments: list[InlineAttachmentPayload] = Field(default_factory=list)
    document_attachments: list[DocumentAttachmentPayload] = Field(
        default_factory=list, alias="documentAttachments"
    )

    check_single_line = field_validator("to", "subject", "reply_to")(_single_line)

    def declared_sizes(self) -> list[tuple[str, int]]:
        """(name, size) for every attachment as declared by the caller."""
        sizes = [(a.name, a.size) for a in self.attachments]
        sizes.extend((d.name, d.file_size or 0) for d in self.document_attachments)
        return sizes

    def to_outbound(self) -> OutboundMessageRequest:
        """Decode inline attachments and build the composer's request.

        Raises:
            BadRequest: if an inline attachment is not valid base64.
        """
        sources: list[InlineAttachment | DocumentAttachment] = []
        for att in self.attachments:
            try:
                data = base64.b64decode(att.data, validate=False)
            except (binascii.Error, ValueError) as exc:
                raise BadRequest(f"Attachment {att.name!r} is not valid base64") from exc
            sources.append(InlineAttachment(filename=att.name, data=data, mime_type=att.mime_type))
        for doc in self.document_attachments:
            sources.append(
                DocumentAttachment(
                    name=doc.name,
                    file_path=doc.file_path,
                    mime_type=doc.mime_type,
                    file_size=doc.file_size,
                    id=doc.id,
                )
            )
        return OutboundMessageRequest(
            to=self.to,
            subject=self.subject,
            content=self.content,
            thread_id=self.thread_id,
            reply_to=self.reply_to,
            attachments=sources,
        )


class DownloadAttachmentRequest(_Request):
    action: Literal["downloadAttachment"]
    message_id: str = Field(alias="messageId", min_length=1)
    attachment_id: str = Field(alias="attachmentId", min_length=1)


class _TargetedRequest(_Request):
    """Thread/message actions whose action name decides which id is required."""

    thread_id: str | None = Field(default=None, alias="threadId")
    message_id: str | None = Field(default=None, alias="messageId")

    @model_validator(mode="after")
    def _needs_matching_id(self) -> _TargetedRequest:
        action = getattr(self, "action", "")
        if action.endswith("Thread") and not self.thread_id:
            raise ValueError(f"{action} requires threadId")
        if action.endswith("Message") and not self.message_id:
            raise ValueError(f"{action} requires messageId")
        return self


class TrashRequest(_TargetedRequest):
    action: Literal["trashThread", "trashMessage"]


class DeleteRequest(_TargetedRequest):
    action: Literal["deleteThread", "deleteMessage"]


class HealthRequest(_Request):
    action: Literal["health"]


ActionRequest = Annotated[
    GetEmailsRequest
    | SearchEmailsRequest
    | MarkAsReadRequest
    | SendEmailRequest
    | DownloadAttachmentRequest
    | TrashRequest
    | DeleteRequest
    | HealthRequest,
    Field(discriminator="action"),
]

_adapter: TypeAdapter[Any] = TypeAdapter(ActionRequest)


def parse_request(payload: Any) -> Any:
    """Validate a raw payload into its action model.

    Raises:
        BadRequest: on any validation failure, including unknown actions.
    """
    try:
        return _adapter.validate_python(payload)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in exc.errors()
        )
        raise BadRequest(f"Invalid request format: {details}") from exc
