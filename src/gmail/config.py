"""Runtime settings for the Gmail sync engine, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from src.processing.parts import DEFAULT_MARKETING_SIGNATURES

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"


def _split_list(raw: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class MailConfig:
    """Provider access, batching and send settings.

    The access token is supplied by the external token manager and never
    refreshed or persisted here.
    """

    access_token: str = ""
    user_email: str = ""
    api_base_url: str = GMAIL_API_BASE_URL
    request_timeout: float = 30.0
    send_timeout: float = 15.0
    batch_size: int = 5
    batch_delay: float = 0.1
    default_query: str = "in:inbox"
    page_size: int = 50
    marketing_signatures: tuple[str, ...] = DEFAULT_MARKETING_SIGNATURES
    documents_dir: Path = field(default_factory=lambda: Path("data/documents"))
    poll_interval: int = 60

    @classmethod
    def from_env(cls) -> MailConfig:
        """Build MailConfig from environment variables."""
        signatures = os.environ.get("MARKETING_SIGNATURES")
        return cls(
            access_token=os.environ.get("GMAIL_ACCESS_TOKEN", ""),
            user_email=os.environ.get("USER_GOOGLE_EMAIL", ""),
            api_base_url=os.environ.get("GMAIL_API_BASE_URL", GMAIL_API_BASE_URL),
            request_timeout=float(os.environ.get("GMAIL_REQUEST_TIMEOUT", "30")),
            send_timeout=float(os.environ.get("GMAIL_SEND_TIMEOUT", "15")),
            batch_size=int(os.environ.get("SYNC_BATCH_SIZE", "5")),
            batch_delay=float(os.environ.get("SYNC_BATCH_DELAY", "0.1")),
            default_query=os.environ.get("SYNC_DEFAULT_QUERY", "in:inbox"),
            page_size=int(os.environ.get("SYNC_PAGE_SIZE", "50")),
            marketing_signatures=(
                _split_list(signatures) if signatures is not None else DEFAULT_MARKETING_SIGNATURES
            ),
            documents_dir=Path(os.environ.get("DOCUMENTS_DIR", "data/documents")),
            poll_interval=int(os.environ.get("POLL_INTERVAL_SECONDS", "60")),
        )
