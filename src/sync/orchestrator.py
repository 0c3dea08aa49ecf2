"""Batched, rate-limit-aware thread retrieval feeding the thread aggregator."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field

from src.gmail.client import AuthExpired, GmailClient, RateLimited
from src.processing.parts import PartWalker, process_message
from src.processing.types import ProcessedEmail
from src.threads.aggregator import ThreadAggregator
from src.threads.types import Conversation

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY_SECONDS = 0.1


@dataclass(frozen=True)
class ThreadFailure:
    """A thread dropped from a sync page, with the reason it failed."""

    thread_id: str
    reason: str


@dataclass
class SyncResult:
    """One page of conversations plus the tally of threads that were skipped."""

    conversations: list[Conversation] = field(default_factory=list)
    next_page_token: str | None = None
    is_complete: bool = True
    failures: list[ThreadFailure] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.failures)


class BatchSyncOrchestrator:
    """Fetches a page of threads in small concurrent batches.

    Threads inside one batch are fetched concurrently; batches run one after
    another with a short pause so the provider's rate limiter never sees a
    burst. A thread that fails to load is logged and dropped, except for
    AuthExpired and RateLimited, which abort the page because every further
    call would fail the same way.

    Usage::

        orchestrator = BatchSyncOrchestrator(gmail)
        result = await orchestrator.sync("in:inbox", 50)
    """

    def __init__(
        self,
        gmail: GmailClient,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
        walker: PartWalker | None = None,
        aggregator: ThreadAggregator | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._gmail = gmail
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._walker = walker or PartWalker()
        self._aggregator = aggregator or ThreadAggregator()

    async def sync(self, query: str, page_size: int, page_token: str | None = None) -> SyncResult:
        """Fetch one page of threads and aggregate them into conversations.

        ``is_complete`` is True exactly when the provider returned no
        further page token.
        """
        page = await self._gmail.list_threads(query, page_size, page_token)
        result = SyncResult(
            next_page_token=page.next_page_token,
            is_complete=page.next_page_token is None,
        )
        if not page.thread_ids:
            return result

        logger.info("Processing %d thread(s) for query %r", len(page.thread_ids), query)
        emails: list[ProcessedEmail] = []

        for start in range(0, len(page.thread_ids), self._batch_size):
            batch = page.thread_ids[start:start + self._batch_size]
            outcomes = await self._load_batch(batch)
            for outcome in outcomes:
                if isinstance(outcome, ThreadFailure):
                    result.failures.append(outcome)
                else:
                    emails.extend(outcome)

            if start + self._batch_size < len(page.thread_ids):
                await asyncio.sleep(self._batch_delay)

        result.conversations = self._aggregator.aggregate(emails)
        if result.failures:
            logger.warning(
                "Sync page finished with %d of %d thread(s) skipped",
                len(result.failures),
                len(page.thread_ids),
            )
        return result

    async def _load_batch(self, batch: list[str]) -> list[list[ProcessedEmail] | ThreadFailure]:
        """Load one batch concurrently; an aborting error cancels the rest of the batch."""
        tasks = [asyncio.create_task(self._load_thread(tid)) for tid in batch]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _load_thread(self, thread_id: str) -> list[ProcessedEmail] | ThreadFailure:
        """Fetch and process one thread; failures become a ThreadFailure record."""
        try:
            data = await self._gmail.get_thread(thread_id)
            messages = data.get("messages") or []
            if not messages:
                logger.warning("Thread %s has no messages", thread_id)
                return ThreadFailure(thread_id, "empty message list")
            logger.debug("Thread %s: %d message(s)", thread_id, len(messages))
            return [
                self._bind_thread(process_message(msg, self._walker), thread_id)
                for msg in messages
            ]
        except (AuthExpired, RateLimited):
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("Error processing thread %s: %s", thread_id, exc, exc_info=True)
            return ThreadFailure(thread_id, str(exc) or type(exc).__name__)

    @staticmethod
    def _bind_thread(email: ProcessedEmail, thread_id: str) -> ProcessedEmail:
        if email.thread_id:
            return email
        return dataclasses.replace(email, thread_id=thread_id)
