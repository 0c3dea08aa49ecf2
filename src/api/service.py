"""Action dispatcher. Validates a request payload, runs it and shapes the JSON response."""

from __future__ import annotations

import asyncio
import base64
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from src.api.requests import (
    BadRequest,
    DeleteRequest,
    DownloadAttachmentRequest,
    GetEmailsRequest,
    HealthRequest,
    MarkAsReadRequest,
    SearchEmailsRequest,
    SendEmailRequest,
    TrashRequest,
    parse_request,
)
from src.compose.composer import (
    AttachmentTooLarge,
    AttachmentUnreadable,
    ComposeError,
    InvalidHeader,
    MessageComposer,
    SizeLimitExceeded,
)
from src.compose.types import MAX_ATTACHMENT_BYTES
from src.gmail.client import GmailApiError, GmailClient
from src.sync.orchestrator import BatchSyncOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_QUERY = "in:inbox"
DEFAULT_MAX_RESULTS = 200
SEARCH_MAX_RESULTS = 200
DEFAULT_SEND_TIMEOUT_SECONDS = 15.0


class SendTimeout(Exception):
    """Composition plus send did not finish within the send timeout."""


def _error_status(exc: Exception) -> int:
    if isinstance(exc, (BadRequest, InvalidHeader)):
        return 400
    if isinstance(exc, (AttachmentTooLarge, SizeLimitExceeded)):
        return 413
    if isinstance(exc, AttachmentUnreadable):
        return 422
    if isinstance(exc, SendTimeout):
        return 504
    if isinstance(exc, GmailApiError):
        return exc.status or 502
    return 500


class MailService:
    """Single entry point for the action protocol.

    Every payload is validated before anything runs; a payload that fails
    validation is answered with a 400 and never partially executed. Known
    failures come back as ``{"error": ..., "status": ...}``; anything else
    propagates.

    Usage::

        async with gmail_client() as gmail:
            service = MailService(gmail, MessageComposer(store), BatchSyncOrchestrator(gmail))
            response = await service.handle({"action": "getEmails", "maxResults": 20})
    """

    def __init__(
        self,
        gmail: GmailClient,
        composer: MessageComposer,
        orchestrator: BatchSyncOrchestrator,
        sender_address: str = "",
        send_timeout: float = DEFAULT_SEND_TIMEOUT_SECONDS,
        default_query: str = DEFAULT_QUERY,
        max_attachment_bytes: int = MAX_ATTACHMENT_BYTES,
    ) -> None:
        self._gmail = gmail
        self._composer = composer
        self._orchestrator = orchestrator
        self._sender_address = sender_address
        self._send_timeout = send_timeout
        self._default_query = default_query
        self._max_attachment_bytes = max_attachment_bytes

    async def handle(self, payload: Any) -> dict[str, Any]:
        """Validate and execute one action payload."""
        request_id = uuid.uuid4().hex[:12]
        action = payload.get("action") if isinstance(payload, dict) else None
        logger.info("[%s] action=%s", request_id, action)

        try:
            request = parse_request(payload)
            response = await self._dispatch(request)
        except (BadRequest, ComposeError, SendTimeout, GmailApiError) as exc:
            status = _error_status(exc)
            level = logging.WARNING if status < 500 else logging.ERROR
            logger.log(level, "[%s] action=%s failed (%d): %s", request_id, action, status, exc)
            return {"error": str(exc), "status": status}

        logger.debug("[%s] action=%s ok", request_id, action)
        return response

    async def _dispatch(self, request: Any) -> dict[str, Any]:
        if isinstance(request, GetEmailsRequest):
            return await self._get_emails(request)
        if isinstance(request, SearchEmailsRequest):
            return await self._search(request)
        if isinstance(request, MarkAsReadRequest):
            await self._gmail.mark_as_read(message_id=request.message_id, thread_id=request.thread_id)
            return {"success": True}
        if isinstance(request, SendEmailRequest):
            return await self._send(request)
        if isinstance(request, DownloadAttachmentRequest):
            attachment = await self._gmail.get_attachment(request.message_id, request.attachment_id)
            return {
                "data": base64.b64encode(attachment.data).decode("ascii"),
                "size": attachment.size,
            }
        if isinstance(request, TrashRequest):
            if request.action == "trashThread":
                await self._gmail.trash_thread(request.thread_id or "")
            else:
                await self._gmail.trash_message(request.message_id or "")
            return {"success": True}
        if isinstance(request, DeleteRequest):
            if request.action == "deleteThread":
                await self._gmail.delete_thread(request.thread_id or "")
            else:
                await self._gmail.delete_message(request.message_id or "")
            return {"success": True}
        if isinstance(request, HealthRequest):
            return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
        raise BadRequest(f"Unsupported action: {getattr(request, 'action', None)!r}")

    # ── Actions ────────────────────────────────────────────────────────────────

    async def _get_emails(self, request: GetEmailsRequest) -> dict[str, Any]:
        result = await self._orchestrator.sync(
            request.query or self._default_query,
            request.max_results or DEFAULT_MAX_RESULTS,
            request.page_token,
        )
        return {
            "conversations": [c.to_dict() for c in result.conversations],
            "nextPageToken": result.next_page_token,
            "allEmailsLoaded": result.is_complete,
            "skippedThreads": result.skipped,
        }

    async def _search(self, request: SearchEmailsRequest) -> dict[str, Any]:
        result = await self._orchestrator.sync(request.query, SEARCH_MAX_RESULTS)
        return {"conversations": [c.to_dict() for c in result.conversations]}

    async def _send(self, request: SendEmailRequest) -> dict[str, Any]:
        oversized = [
            name for name, size in request.declared_sizes() if size > self._max_attachment_bytes
        ]
        if oversized:
            raise AttachmentTooLarge(oversized, self._max_attachment_bytes)

        outbound = request.to_outbound()
        try:
            sent = await asyncio.wait_for(self._compose_and_send(outbound), self._send_timeout)
        except asyncio.TimeoutError as exc:
            raise SendTimeout(
                f"Sending timed out after {self._send_timeout:.0f}s"
            ) from exc
        return {"success": True, "messageId": sent.get("id")}

    async def _compose_and_send(self, outbound: Any) -> dict[str, Any]:
        sender = await self._resolve_sender()
        raw = await self._composer.compose(outbound, sender)
        return await self._gmail.send_raw(raw, outbound.thread_id)

    async def _resolve_sender(self) -> str:
        """Configured sender address, else the authenticated profile's address."""
        if not self._sender_address:
            profile = await self._gmail.get_profile()
            self._sender_address = str(profile.get("emailAddress") or "")
            if not self._sender_address:
                raise GmailApiError("Could not determine the sender address", 502)
        return self._sender_address
