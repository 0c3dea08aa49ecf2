"""Tests for MailboxWatcher; the orchestrator and handler are mocked."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.gmail.client import AuthExpired, GmailApiError, RateLimited
from src.sync.orchestrator import SyncResult
from src.sync.watcher import ConversationHandler, LoggingHandler, MailboxWatcher
from src.threads.types import Conversation


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_conv(id: str, messages: int = 1, last_date: str = "2024-01-01") -> Conversation:
    return Conversation(id=id, subject=f"Subject {id}", message_count=messages, last_date=last_date)


def make_orchestrator(*outcomes: object) -> MagicMock:
    """Orchestrator whose sync() yields successive results (or raises exceptions)."""
    side_effect = [
        o if isinstance(o, Exception) else SyncResult(conversations=list(o))  # type: ignore[arg-type]
        for o in outcomes
    ]
    orchestrator = MagicMock()
    orchestrator.sync = AsyncMock(side_effect=side_effect)
    return orchestrator


def make_handler() -> MagicMock:
    handler = MagicMock()
    handler.handle = AsyncMock()
    return handler


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# ── Protocol conformance ───────────────────────────────────────────────────────


class TestConversationHandlerProtocol:
    def test_logging_handler_satisfies_protocol(self) -> None:
        assert isinstance(LoggingHandler(), ConversationHandler)

    async def test_logging_handler_does_not_raise(self) -> None:
        await LoggingHandler().handle(make_conv("c1"))


# ── poll ───────────────────────────────────────────────────────────────────────


class TestPoll:
    async def test_first_poll_only_seeds(self) -> None:
        handler = make_handler()
        watcher = MailboxWatcher(make_orchestrator([make_conv("a"), make_conv("b")]), handler)
        assert await watcher.poll() == []
        handler.handle.assert_not_awaited()

    async def test_reports_new_and_changed_conversations(self) -> None:
        handler = make_handler()
        orchestrator = make_orchestrator(
            [make_conv("a"), make_conv("b")],
            [make_conv("a", messages=2, last_date="2024-01-02"), make_conv("b"), make_conv("c")],
        )
        watcher = MailboxWatcher(orchestrator, handler, query="label:work", page_size=10)
        await watcher.poll()
        changed = await watcher.poll()

        assert [c.id for c in changed] == ["a", "c"]
        assert [call.args[0].id for call in handler.handle.await_args_list] == ["a", "c"]
        orchestrator.sync.assert_awaited_with("label:work", 10)

    async def test_unchanged_poll_reports_nothing(self) -> None:
        handler = make_handler()
        watcher = MailboxWatcher(make_orchestrator([make_conv("a")], [make_conv("a")]), handler)
        await watcher.poll()
        assert await watcher.poll() == []
        handler.handle.assert_not_awaited()

    async def test_handler_errors_do_not_stop_other_updates(self) -> None:
        handler = make_handler()
        handler.handle.side_effect = [RuntimeError("boom"), None]
        watcher = MailboxWatcher(
            make_orchestrator([], [make_conv("a"), make_conv("b")]), handler
        )
        await watcher.poll()
        changed = await watcher.poll()
        assert len(changed) == 2
        assert handler.handle.await_count == 2

    async def test_auth_expired_stops_watcher(self) -> None:
        orchestrator = make_orchestrator(AuthExpired(), [make_conv("a")])
        watcher = MailboxWatcher(orchestrator, make_handler())
        await watcher.poll()
        assert watcher.stopped
        assert await watcher.poll() == []
        assert orchestrator.sync.await_count == 1

    async def test_generic_api_error_is_logged_and_polling_continues(self) -> None:
        orchestrator = make_orchestrator(GmailApiError("down", 503), [make_conv("a")])
        watcher = MailboxWatcher(orchestrator, make_handler())
        assert await watcher.poll() == []
        await watcher.poll()
        assert not watcher.stopped
        assert orchestrator.sync.await_count == 2

    async def test_stop_and_wait(self) -> None:
        watcher = MailboxWatcher(make_orchestrator(), make_handler())
        watcher.stop()
        await watcher.wait_stopped()
        assert watcher.stopped


# ── Rate-limit backoff ─────────────────────────────────────────────────────────


class TestRateLimitBackoff:
    async def test_retry_after_pauses_polls(self) -> None:
        clock = FakeClock()
        orchestrator = make_orchestrator(RateLimited(retry_after=30), [make_conv("a")])
        watcher = MailboxWatcher(orchestrator, make_handler(), poll_interval=60, clock=clock)

        await watcher.poll()
        clock.now += 29
        await watcher.poll()
        assert orchestrator.sync.await_count == 1

        clock.now += 2
        await watcher.poll()
        assert orchestrator.sync.await_count == 2

    @pytest.mark.parametrize(
        ("failures", "expected_pause"),
        [(1, 120), (2, 240), (3, 300)],
    )
    async def test_exponential_backoff_capped(self, failures: int, expected_pause: float) -> None:
        clock = FakeClock()
        outcomes = [RateLimited() for _ in range(failures)] + [[make_conv("a")]]
        orchestrator = make_orchestrator(*outcomes)
        watcher = MailboxWatcher(orchestrator, make_handler(), poll_interval=60, clock=clock)

        for _ in range(failures - 1):
            await watcher.poll()
            clock.now += 1000
        await watcher.poll()

        clock.now += expected_pause - 1
        await watcher.poll()
        assert orchestrator.sync.await_count == failures

        clock.now += 2
        await watcher.poll()
        assert orchestrator.sync.await_count == failures + 1
