"""Mailbox watcher. Re-syncs a query periodically and reports changed conversations."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from src.gmail.client import AuthExpired, GmailApiError, RateLimited
from src.sync.orchestrator import BatchSyncOrchestrator
from src.threads.types import Conversation

logger = logging.getLogger(__name__)

# Backoff after a rate limit: 2^attempt × interval, capped at 5 minutes
_MAX_BACKOFF_SECONDS = 300


# ── Handler interface ──────────────────────────────────────────────────────────


@runtime_checkable
class ConversationHandler(Protocol):
    """Receives conversations that are new or changed since the previous poll."""

    async def handle(self, conversation: Conversation) -> None:
        """Implementations should not raise; the watcher logs and continues if they do."""
        ...


class LoggingHandler:
    """Handler that only logs each update."""

    async def handle(self, conversation: Conversation) -> None:
        logger.info(
            "conversation id=%s subject=%r messages=%d unread=%d",
            conversation.id,
            conversation.subject,
            conversation.message_count,
            conversation.unread_count,
        )


# ── Watcher ────────────────────────────────────────────────────────────────────


class MailboxWatcher:
    """Polls the first page of a query and forwards new or changed conversations.

    The first poll only records what is already there. A conversation counts
    as changed when its message count or last date differs from the previous
    poll. RateLimited pauses polling (Retry-After when given, exponential
    backoff otherwise); AuthExpired stops the watcher for good, since the
    token must be refreshed elsewhere.

    Usage::

        watcher = MailboxWatcher(BatchSyncOrchestrator(gmail), LoggingHandler())
        scheduler = create_sync_scheduler(watcher, interval_seconds=60)
        scheduler.start()
        await watcher.wait_stopped()
    """

    def __init__(
        self,
        orchestrator: BatchSyncOrchestrator,
        handler: ConversationHandler,
        query: str = "in:inbox",
        page_size: int = 50,
        poll_interval: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._orchestrator = orchestrator
        self._handler = handler
        self._query = query
        self._page_size = page_size
        self._poll_interval = poll_interval
        self._clock = clock
        self._seen: dict[str, tuple[int, str]] = {}
        self._seeded = False
        self._rate_limit_attempts = 0
        self._paused_until = 0.0
        self._stop_event = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Signal the watcher to stop; later polls become no-ops."""
        logger.info("Watcher stop requested")
        self._stop_event.set()

    async def wait_stopped(self) -> None:
        await self._stop_event.wait()

    async def poll(self) -> list[Conversation]:
        """Run one sync and return the conversations passed to the handler."""
        if self.stopped:
            return []
        if self._clock() < self._paused_until:
            logger.debug("Poll skipped: rate-limit pause in effect")
            return []

        try:
            result = await self._orchestrator.sync(self._query, self._page_size)
        except AuthExpired:
            logger.error("Gmail token expired; stopping watcher until it is refreshed")
            self.stop()
            return []
        except RateLimited as exc:
            self._rate_limit_attempts += 1
            delay = exc.retry_after or min(
                2**self._rate_limit_attempts * self._poll_interval, _MAX_BACKOFF_SECONDS
            )
            self._paused_until = self._clock() + delay
            logger.warning(
                "Rate limited (attempt %d), pausing polls for %.0fs",
                self._rate_limit_attempts,
                delay,
            )
            return []
        except GmailApiError as exc:
            logger.error("Sync failed: %s", exc)
            return []

        self._rate_limit_attempts = 0
        changed = self._diff(result.conversations)
        if not self._seeded:
            self._seeded = True
            logger.info("Startup: recorded %d existing conversation(s)", len(self._seen))
            return []

        if not changed:
            logger.debug("Poll: no changes (%d conversations)", len(result.conversations))
            return []

        logger.info("Poll: %d new or updated conversation(s)", len(changed))
        for conversation in changed:
            try:
                await self._handler.handle(conversation)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Handler failed on conversation %s: %s", conversation.id, exc, exc_info=True
                )
        return changed

    def _diff(self, conversations: list[Conversation]) -> list[Conversation]:
        """Record the latest state and return conversations that differ from it."""
        changed: list[Conversation] = []
        for conv in conversations:
            state = (conv.message_count, conv.last_date)
            if self._seen.get(conv.id) != state:
                changed.append(conv)
            self._seen[conv.id] = state
        return changed
