"""Shared pytest fixtures."""

import base64

import pytest


def _b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


@pytest.fixture
def sample_gmail_message() -> dict:
    """A provider message in full format: multipart/mixed with alternative bodies and a PDF."""
    return {
        "id": "msg_001",
        "threadId": "thread_001",
        "snippet": "Hi, please review the attached budget figures",
        "labelIds": ["INBOX", "UNREAD"],
        "internalDate": "1704153600000",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "From", "value": "Alice <alice@example.com>"},
                {"name": "To", "value": "bob@example.com"},
                {"name": "Subject", "value": "Q2 budget review"},
                {"name": "Date", "value": "Tue, 02 Jan 2024 00:00:00 +0000"},
            ],
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [
                        {
                            "mimeType": "text/plain",
                            "body": {"data": _b64url("Hi Bob,\nPlease review by Friday.")},
                        },
                        {
                            "mimeType": "text/html",
                            "body": {"data": _b64url("<p>Hi Bob,</p><p>Please review by Friday.</p>")},
                        },
                    ],
                },
                {
                    "mimeType": "application/pdf",
                    "filename": "budget.pdf",
                    "body": {"attachmentId": "att_1", "size": 2048},
                },
            ],
        },
    }
