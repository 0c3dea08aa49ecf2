"""Gmail REST client. Wraps the provider calls the sync engine depends on in a typed async API."""

from __future__ import annotations

import binascii
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.gmail.config import MailConfig
from src.processing.decoder import b64url_decode
from src.processing.types import UNREAD_LABEL

logger = logging.getLogger(__name__)


# ── Errors ─────────────────────────────────────────────────────────────────────


class GmailApiError(Exception):
    """Raised when a Gmail API call fails. ``status`` is 0 for transport errors."""

    def __init__(self, message: str, status: int = 500) -> None:
        super().__init__(message)
        self.status = status


class AuthExpired(GmailApiError):
    """HTTP 401: the access token must be refreshed before any retry."""

    def __init__(self, message: str = "Gmail authentication expired") -> None:
        super().__init__(message, 401)


class RateLimited(GmailApiError):
    """HTTP 429: retry policy belongs to the caller."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float | None = None) -> None:
        super().__init__(message, 429)
        self.retry_after = retry_after


# ── Response types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ThreadPage:
    """One page of thread ids from a list-threads query."""

    thread_ids: list[str] = field(default_factory=list)
    next_page_token: str | None = None
    result_size_estimate: int = 0


@dataclass(frozen=True)
class AttachmentData:
    """Downloaded attachment bytes plus the provider-reported size."""

    data: bytes
    size: int


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    try:
        return float(raw) if raw is not None else None
    except ValueError:
        return None


class GmailClient:
    """Thin async wrapper around the Gmail v1 REST endpoints.

    Holds one ``httpx.AsyncClient`` whose base URL and bearer header are
    already configured; use the ``gmail_client()`` context manager to build
    and close it. Tests inject a client backed by ``httpx.MockTransport``.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    # ── Read ───────────────────────────────────────────────────────────────────

    async def list_threads(
        self, query: str, max_results: int, page_token: str | None = None
    ) -> ThreadPage:
        """Return one page of thread ids matching a Gmail search query."""
        params: dict[str, Any] = {"maxResults": max_results, "q": query}
        if page_token:
            params["pageToken"] = page_token
        data = await self._request("GET", "/users/me/threads", params=params)
        return ThreadPage(
            thread_ids=[
                str(t["id"]) for t in data.get("threads") or [] if isinstance(t, dict) and t.get("id")
            ],
            next_page_token=data.get("nextPageToken") or None,
            result_size_estimate=int(data.get("resultSizeEstimate") or 0),
        )

    async def get_thread(self, thread_id: str) -> dict[str, Any]:
        """Return a thread with every message in full format."""
        return await self._request(
            "GET", f"/users/me/threads/{thread_id}", params={"format": "full"}
        )

    async def get_attachment(self, message_id: str, attachment_id: str) -> AttachmentData:
        """Download an attachment and decode its base64url body to raw bytes."""
        data = await self._request(
            "GET", f"/users/me/messages/{message_id}/attachments/{attachment_id}"
        )
        try:
            raw = b64url_decode(str(data.get("data", "")))
        except (binascii.Error, ValueError) as exc:
            raise GmailApiError(f"Malformed attachment data for {attachment_id}: {exc}", 502) from exc
        logger.debug("Decoded attachment %s: %d bytes", attachment_id, len(raw))
        return AttachmentData(data=raw, size=int(data.get("size") or len(raw)))

    async def get_profile(self) -> dict[str, Any]:
        return await self._request("GET", "/users/me/profile")

    # ── Write ──────────────────────────────────────────────────────────────────

    async def send_raw(self, raw: str, thread_id: str | None = None) -> dict[str, Any]:
        """Send a base64url-encoded RFC 2822 message, optionally bound to a thread."""
        body: dict[str, Any] = {"raw": raw}
        if thread_id:
            body["threadId"] = thread_id
        result = await self._request("POST", "/users/me/messages/send", json=body)
        logger.info("Sent message id=%s thread=%s", result.get("id"), result.get("threadId"))
        return result

    async def modify_message_labels(
        self, message_id: str, add: list[str] | None = None, remove: list[str] | None = None
    ) -> None:
        await self._request(
            "POST",
            f"/users/me/messages/{message_id}/modify",
            json={"addLabelIds": add or [], "removeLabelIds": remove or []},
        )

    async def modify_thread_labels(
        self, thread_id: str, add: list[str] | None = None, remove: list[str] | None = None
    ) -> None:
        await self._request(
            "POST",
            f"/users/me/threads/{thread_id}/modify",
            json={"addLabelIds": add or [], "removeLabelIds": remove or []},
        )

    async def mark_as_read(self, message_id: str | None = None, thread_id: str | None = None) -> None:
        """Remove the UNREAD label from a thread (preferred) or a single message."""
        if thread_id:
            await self.modify_thread_labels(thread_id, remove=[UNREAD_LABEL])
        elif message_id:
            await self.modify_message_labels(message_id, remove=[UNREAD_LABEL])
        else:
            raise ValueError("mark_as_read needs a message_id or thread_id")

    async def trash_message(self, message_id: str) -> None:
        await self._request("POST", f"/users/me/messages/{message_id}/trash")

    async def trash_thread(self, thread_id: str) -> None:
        await self._request("POST", f"/users/me/threads/{thread_id}/trash")

    async def delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/users/me/messages/{message_id}")

    async def delete_thread(self, thread_id: str) -> None:
        await self._request("DELETE", f"/users/me/threads/{thread_id}")

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Issue a request and return the decoded JSON body ({} when empty).

        Raises AuthExpired on 401, RateLimited on 429 and GmailApiError for
        any other failure, including transport errors.
        """
        logger.debug("Gmail → %s %s", method, path)
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise GmailApiError(f"Gmail request timed out: {method} {path}", 0) from exc
        except httpx.HTTPError as exc:
            raise GmailApiError(f"Gmail request failed: {exc}", 0) from exc

        if response.is_success:
            if not response.content:
                return {}
            try:
                data = response.json()
            except ValueError as exc:
                raise GmailApiError(f"Malformed JSON from {method} {path}", 502) from exc
            return data if isinstance(data, dict) else {}

        logger.error("Gmail API error %d on %s %s: %s", response.status_code, method, path, response.text[:500])
        if response.status_code == 401:
            raise AuthExpired()
        if response.status_code == 429:
            raise RateLimited(retry_after=_retry_after(response))
        raise GmailApiError(
            f"Gmail API error: {response.status_code} {response.text[:200]}", response.status_code
        )


@asynccontextmanager
async def gmail_client(
    *,
    access_token: str | None = None,
    base_url: str | None = None,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[GmailClient]:
    """Async context manager that yields a ready-to-use GmailClient.

    Args:
        access_token: OAuth bearer token. Falls back to GMAIL_ACCESS_TOKEN.
        base_url: API root. Falls back to GMAIL_API_BASE_URL or the public endpoint.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).

    Example::

        async with gmail_client() as client:
            page = await client.list_threads("in:inbox", 50)
    """
    config = MailConfig.from_env()
    token = access_token or config.access_token
    if not token:
        raise ValueError(
            "access_token must be provided or GMAIL_ACCESS_TOKEN env var must be set"
        )

    async with httpx.AsyncClient(
        base_url=base_url or config.api_base_url,
        headers={"Authorization": f"Bearer {token}"},
        timeout=timeout if timeout is not None else config.request_timeout,
        transport=transport,
    ) as http:
        yield GmailClient(http)
