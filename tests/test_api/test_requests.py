"""Tests for action request validation."""

import base64

import pytest

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
from src.compose.types import DocumentAttachment, InlineAttachment


# ── Dispatch on action ─────────────────────────────────────────────────────────


class TestParseRequest:
    @pytest.mark.parametrize(
        ("payload", "model"),
        [
            ({"action": "getEmails"}, GetEmailsRequest),
            ({"action": "searchEmails", "query": "from:bob"}, SearchEmailsRequest),
            ({"action": "markAsRead", "threadId": "t1"}, MarkAsReadRequest),
            ({"action": "sendEmail", "to": "a@x.com", "subject": "s", "content": "c"}, SendEmailRequest),
            ({"action": "downloadAttachment", "messageId": "m", "attachmentId": "a"}, DownloadAttachmentRequest),
            ({"action": "trashThread", "threadId": "t1"}, TrashRequest),
            ({"action": "trashMessage", "messageId": "m1"}, TrashRequest),
            ({"action": "deleteThread", "threadId": "t1"}, DeleteRequest),
            ({"action": "deleteMessage", "messageId": "m1"}, DeleteRequest),
            ({"action": "health"}, HealthRequest),
        ],
    )
    def test_selects_model_by_action(self, payload: dict, model: type) -> None:
        assert isinstance(parse_request(payload), model)

    def test_get_emails_fields(self) -> None:
        request = parse_request(
            {"action": "getEmails", "query": "label:work", "maxResults": 25, "pageToken": "p2"}
        )
        assert request.query == "label:work"
        assert request.max_results == 25
        assert request.page_token == "p2"

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"action": "launchRockets"},
            "not a dict",
            {"action": "getEmails", "maxResults": 0},
            {"action": "getEmails", "maxResults": 201},
            {"action": "searchEmails"},
            {"action": "searchEmails", "query": ""},
            {"action": "markAsRead"},
            {"action": "sendEmail", "subject": "s", "content": "c"},
            {"action": "sendEmail", "to": "", "subject": "s", "content": "c"},
            {"action": "downloadAttachment", "messageId": "m"},
            {"action": "trashThread", "messageId": "m1"},
            {"action": "deleteMessage", "threadId": "t1"},
        ],
    )
    def test_invalid_payloads_raise_bad_request(self, payload: object) -> None:
        with pytest.raises(BadRequest):
            parse_request(payload)

    def test_bad_request_names_the_field(self) -> None:
        with pytest.raises(BadRequest, match="maxResults"):
            parse_request({"action": "getEmails", "maxResults": 500})


# ── sendEmail conversion ───────────────────────────────────────────────────────


class TestSendEmailRequest:
    def _payload(self, **extra: object) -> dict:
        payload: dict = {"action": "sendEmail", "to": "bob@x.com", "subject": "Hi", "content": "<p>x</p>"}
        payload.update(extra)
        return payload

    def test_to_outbound_decodes_inline_attachments(self) -> None:
        request = parse_request(
            self._payload(
                threadId="t1",
                replyTo="team@x.com",
                attachments=[
                    {"name": "a.txt", "data": base64.b64encode(b"hello").decode(), "mimeType": "text/plain", "size": 5}
                ],
                documentAttachments=[
                    {"id": "d1", "name": "r.pdf", "file_path": "reports/r.pdf", "mime_type": "application/pdf", "file_size": 10}
                ],
            )
        )
        outbound = request.to_outbound()
        assert outbound.thread_id == "t1"
        assert outbound.reply_to == "team@x.com"
        assert outbound.attachments == [
            InlineAttachment("a.txt", b"hello", "text/plain"),
            DocumentAttachment("r.pdf", "reports/r.pdf", "application/pdf", 10, "d1"),
        ]

    def test_declared_sizes(self) -> None:
        request = parse_request(
            self._payload(
                attachments=[{"name": "a", "data": "", "size": 7}],
                documentAttachments=[{"name": "d", "file_path": "d"}],
            )
        )
        assert request.declared_sizes() == [("a", 7), ("d", 0)]

    def test_invalid_base64_raises_bad_request(self) -> None:
        request = parse_request(
            self._payload(attachments=[{"name": "a", "data": "abc", "size": 2}])
        )
        with pytest.raises(BadRequest, match="base64"):
            request.to_outbound()

    def test_snake_case_names_also_accepted(self) -> None:
        request = parse_request(self._payload(reply_to="r@x.com", thread_id="t9"))
        assert request.reply_to == "r@x.com"
        assert request.thread_id == "t9"

    @pytest.mark.parametrize(
        "extra",
        [
            {"subject": "Hi\r\nBcc: victim@evil.com"},
            {"to": "bob@x.com\nBcc: victim@evil.com"},
            {"replyTo": "r@x.com\rX-Evil: 1"},
            {"attachments": [{"name": "a\r\nX: y", "data": "", "size": 0}]},
            {"documentAttachments": [{"name": "d", "file_path": "d", "mime_type": "text/plain\nX: y"}]},
        ],
    )
    def test_line_breaks_in_header_fields_rejected(self, extra: dict) -> None:
        with pytest.raises(BadRequest, match="line breaks"):
            parse_request(self._payload(**extra))

    def test_line_breaks_in_content_allowed(self) -> None:
        request = parse_request(self._payload(content="<p>one</p>\r\n<p>two</p>"))
        assert request.content == "<p>one</p>\r\n<p>two</p>"
