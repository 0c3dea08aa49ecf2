"""Tests for GmailClient; every provider call is served by httpx.MockTransport."""

import base64
import json
from collections.abc import Callable

import httpx
import pytest

from src.gmail.client import (
    AuthExpired,
    GmailApiError,
    GmailClient,
    RateLimited,
    gmail_client,
)


# ── Helpers ────────────────────────────────────────────────────────────────────


class Recorder:
    """Collects requests and answers them with a handler."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []
        self._handler = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> tuple[GmailClient, Recorder]:
    recorder = Recorder(handler)
    http = httpx.AsyncClient(
        base_url="https://gmail.test/gmail/v1", transport=httpx.MockTransport(recorder)
    )
    return GmailClient(http), recorder


def json_response(data: object, status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status, json=data)


# ── Reads ──────────────────────────────────────────────────────────────────────


class TestListThreads:
    async def test_returns_ids_and_token(self) -> None:
        client, rec = make_client(
            json_response(
                {"threads": [{"id": "t1"}, {"id": "t2"}], "nextPageToken": "p2", "resultSizeEstimate": 80}
            )
        )
        page = await client.list_threads("in:inbox", 50)
        assert page.thread_ids == ["t1", "t2"]
        assert page.next_page_token == "p2"
        assert page.result_size_estimate == 80

        req = rec.requests[0]
        assert req.method == "GET"
        assert req.url.path == "/gmail/v1/users/me/threads"
        assert req.url.params["q"] == "in:inbox"
        assert req.url.params["maxResults"] == "50"
        assert "pageToken" not in req.url.params

    async def test_passes_page_token(self) -> None:
        client, rec = make_client(json_response({}))
        page = await client.list_threads("label:work", 10, "tok")
        assert rec.requests[0].url.params["pageToken"] == "tok"
        assert page.thread_ids == []
        assert page.next_page_token is None


class TestGetThread:
    async def test_requests_full_format(self) -> None:
        client, rec = make_client(json_response({"id": "t1", "messages": [{"id": "m1"}]}))
        data = await client.get_thread("t1")
        assert data["messages"][0]["id"] == "m1"
        assert rec.requests[0].url.path.endswith("/users/me/threads/t1")
        assert rec.requests[0].url.params["format"] == "full"


class TestGetAttachment:
    async def test_decodes_base64url_bytes(self) -> None:
        raw = bytes(range(256))
        encoded = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
        client, rec = make_client(json_response({"data": encoded, "size": 256}))
        attachment = await client.get_attachment("m1", "a1")
        assert attachment.data == raw
        assert attachment.size == 256
        assert rec.requests[0].url.path.endswith("/users/me/messages/m1/attachments/a1")

    async def test_malformed_data_raises(self) -> None:
        client, _ = make_client(json_response({"data": "a", "size": 1}))
        with pytest.raises(GmailApiError) as exc_info:
            await client.get_attachment("m1", "a1")
        assert exc_info.value.status == 502


# ── Writes ─────────────────────────────────────────────────────────────────────


class TestSendRaw:
    async def test_posts_raw_and_thread_id(self) -> None:
        client, rec = make_client(json_response({"id": "sent1", "threadId": "t1"}))
        result = await client.send_raw("UmF3", "t1")
        assert result["id"] == "sent1"
        req = rec.requests[0]
        assert req.method == "POST"
        assert req.url.path.endswith("/users/me/messages/send")
        assert json.loads(req.content) == {"raw": "UmF3", "threadId": "t1"}

    async def test_omits_thread_id_when_not_given(self) -> None:
        client, rec = make_client(json_response({"id": "sent1"}))
        await client.send_raw("UmF3")
        assert json.loads(rec.requests[0].content) == {"raw": "UmF3"}


class TestLabelsAndTrash:
    async def test_mark_thread_read(self) -> None:
        client, rec = make_client(json_response({}))
        await client.mark_as_read(message_id="m1", thread_id="t1")
        req = rec.requests[0]
        assert req.url.path.endswith("/users/me/threads/t1/modify")
        assert json.loads(req.content) == {"addLabelIds": [], "removeLabelIds": ["UNREAD"]}

    async def test_mark_message_read(self) -> None:
        client, rec = make_client(json_response({}))
        await client.mark_as_read(message_id="m1")
        assert rec.requests[0].url.path.endswith("/users/me/messages/m1/modify")

    async def test_mark_as_read_needs_an_id(self) -> None:
        client, _ = make_client(json_response({}))
        with pytest.raises(ValueError):
            await client.mark_as_read()

    @pytest.mark.parametrize(
        ("method_name", "method", "path"),
        [
            ("trash_thread", "POST", "/users/me/threads/x/trash"),
            ("trash_message", "POST", "/users/me/messages/x/trash"),
            ("delete_thread", "DELETE", "/users/me/threads/x"),
            ("delete_message", "DELETE", "/users/me/messages/x"),
        ],
    )
    async def test_trash_and_delete_routes(self, method_name: str, method: str, path: str) -> None:
        client, rec = make_client(lambda request: httpx.Response(204))
        await getattr(client, method_name)("x")
        assert rec.requests[0].method == method
        assert rec.requests[0].url.path.endswith(path)


# ── Error mapping ──────────────────────────────────────────────────────────────


class TestErrors:
    async def test_401_raises_auth_expired(self) -> None:
        client, _ = make_client(json_response({"error": "invalid"}, 401))
        with pytest.raises(AuthExpired) as exc_info:
            await client.get_thread("t1")
        assert exc_info.value.status == 401

    async def test_429_raises_rate_limited_with_retry_after(self) -> None:
        client, _ = make_client(
            lambda request: httpx.Response(429, headers={"Retry-After": "12"}, json={})
        )
        with pytest.raises(RateLimited) as exc_info:
            await client.list_threads("in:inbox", 5)
        assert exc_info.value.retry_after == 12.0
        assert exc_info.value.status == 429

    async def test_429_without_retry_after(self) -> None:
        client, _ = make_client(json_response({}, 429))
        with pytest.raises(RateLimited) as exc_info:
            await client.list_threads("in:inbox", 5)
        assert exc_info.value.retry_after is None

    async def test_other_status_keeps_code(self) -> None:
        client, _ = make_client(json_response({"error": "nope"}, 404))
        with pytest.raises(GmailApiError) as exc_info:
            await client.get_thread("missing")
        assert exc_info.value.status == 404
        assert not isinstance(exc_info.value, (AuthExpired, RateLimited))

    async def test_transport_error_has_status_zero(self) -> None:
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client, _ = make_client(boom)
        with pytest.raises(GmailApiError) as exc_info:
            await client.get_profile()
        assert exc_info.value.status == 0

    async def test_malformed_json_is_502(self) -> None:
        client, _ = make_client(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(GmailApiError) as exc_info:
            await client.get_profile()
        assert exc_info.value.status == 502


# ── gmail_client() ─────────────────────────────────────────────────────────────


class TestGmailClientContextManager:
    async def test_sets_bearer_header_and_base_url(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"emailAddress": "me@x.com"})

        async with gmail_client(
            access_token="tok123",
            base_url="https://gmail.test/gmail/v1",
            transport=httpx.MockTransport(handler),
        ) as client:
            profile = await client.get_profile()

        assert profile["emailAddress"] == "me@x.com"
        assert seen[0].headers["Authorization"] == "Bearer tok123"
        assert str(seen[0].url) == "https://gmail.test/gmail/v1/users/me/profile"

    async def test_missing_token_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GMAIL_ACCESS_TOKEN", raising=False)
        with pytest.raises(ValueError, match="GMAIL_ACCESS_TOKEN"):
            async with gmail_client():
                pass

    async def test_token_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GMAIL_ACCESS_TOKEN", "envtok")
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        async with gmail_client(transport=httpx.MockTransport(handler)) as client:
            await client.get_profile()
        assert seen[0].headers["Authorization"] == "Bearer envtok"
