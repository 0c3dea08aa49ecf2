"""CLI command implementations. Provider access goes through gmail_client()."""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import click
from rich import box
from rich.console import Console
from rich.table import Table

from src.api.service import MailService
from src.compose.composer import MessageComposer
from src.compose.documents import LocalDocumentStore
from src.gmail.client import GmailApiError, GmailClient, gmail_client
from src.gmail.config import MailConfig
from src.processing.parts import PartWalker
from src.sync.orchestrator import BatchSyncOrchestrator
from src.sync.scheduler import create_sync_scheduler
from src.sync.watcher import MailboxWatcher
from src.threads.clustering import ClusterThresholds, SimilarityClusterer, flatten_clusters
from src.threads.types import Conversation

logger = logging.getLogger(__name__)
console = Console(width=200)

T = TypeVar("T")


# ── Helpers ────────────────────────────────────────────────────────────────────


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


def _run(config: MailConfig, action: Callable[[GmailClient], Awaitable[T]]) -> T:
    """Open a Gmail client, run ``action`` with it, and turn provider errors into exit 1."""

    async def _inner() -> T:
        async with gmail_client(
            access_token=config.access_token,
            base_url=config.api_base_url,
            timeout=config.request_timeout,
        ) as gmail:
            return await action(gmail)

    try:
        return asyncio.run(_inner())
    except (GmailApiError, ValueError) as exc:
        _fail(f"Gmail error: {exc}")


def _orchestrator(gmail: GmailClient, config: MailConfig) -> BatchSyncOrchestrator:
    return BatchSyncOrchestrator(
        gmail,
        batch_size=config.batch_size,
        batch_delay=config.batch_delay,
        walker=PartWalker(config.marketing_signatures),
    )


def _service(gmail: GmailClient, config: MailConfig) -> MailService:
    return MailService(
        gmail,
        MessageComposer(LocalDocumentStore(config.documents_dir)),
        _orchestrator(gmail, config),
        sender_address=config.user_email,
        send_timeout=config.send_timeout,
        default_query=config.default_query,
    )


def _check_response(response: dict[str, Any]) -> dict[str, Any]:
    if "error" in response:
        _fail(f"Error ({response.get('status')}): {response['error']}")
    return response


def _conversation_table(conversations: list[Conversation]) -> Table:
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Subject", max_width=48)
    table.add_column("Participants", max_width=40)
    table.add_column("Last date", width=32)
    table.add_column("Msgs", width=5)
    table.add_column("Unread", width=6)
    table.add_column("Id", style="dim", width=24)

    for i, conv in enumerate(conversations, start=1):
        unread_style = "bold yellow" if conv.unread_count else "dim"
        table.add_row(
            str(i),
            conv.subject,
            ", ".join(sorted(conv.participants)),
            conv.last_date,
            str(conv.message_count),
            f"[{unread_style}]{conv.unread_count}[/{unread_style}]",
            conv.id,
        )
    return table


# ── sync / search ──────────────────────────────────────────────────────────────


@click.command()
@click.option("--query", default=None, help="Gmail search query. Defaults to SYNC_DEFAULT_QUERY.")
@click.option("--limit", default=None, type=click.IntRange(1, 200), help="Threads per page.")
@click.option("--page-token", default=None, help="Continue from a previous page.")
@click.option("--cluster", is_flag=True, help="Merge conversations that look like one exchange.")
@click.pass_obj
def sync(
    config: MailConfig, query: str | None, limit: int | None, page_token: str | None, cluster: bool
) -> None:
    """Fetch one page of threads and show them as conversations."""
    query = query or config.default_query

    async def _sync(gmail: GmailClient) -> Any:
        return await _orchestrator(gmail, config).sync(query, limit or config.page_size, page_token)

    result = _run(config, _sync)
    conversations = result.conversations
    if cluster:
        clusters = SimilarityClusterer(ClusterThresholds.from_env()).cluster(conversations)
        conversations = flatten_clusters(clusters)

    if not conversations:
        console.print(f"[yellow]No conversations for {query!r}.[/yellow]")
    else:
        console.print(f"\nConversations for [bold]{query!r}[/bold]\n")
        console.print(_conversation_table(conversations))

    if result.skipped:
        console.print(f"[red]{result.skipped} thread(s) skipped[/red]")
    if result.next_page_token:
        console.print(f"  [dim]Next page:[/dim] --page-token {result.next_page_token}")
    else:
        console.print("  [dim]All emails loaded.[/dim]")


@click.command()
@click.argument("query")
@click.pass_obj
def search(config: MailConfig, query: str) -> None:
    """Search the mailbox with a Gmail query."""

    async def _search(gmail: GmailClient) -> dict[str, Any]:
        return await _service(gmail, config).handle({"action": "searchEmails", "query": query})

    response = _check_response(_run(config, _search))
    conversations = response["conversations"]
    if not conversations:
        console.print(f"[yellow]No matches for {query!r}.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Subject", max_width=48)
    table.add_column("Last date", width=32)
    table.add_column("Msgs", width=5)
    table.add_column("Id", style="dim", width=24)
    for i, conv in enumerate(conversations, start=1):
        table.add_row(
            str(i), conv["subject"], conv["lastDate"], str(conv["messageCount"]), conv["id"]
        )
    console.print(f"\nSearch results for [bold]{query!r}[/bold]\n")
    console.print(table)


# ── send ───────────────────────────────────────────────────────────────────────


def _inline_attachment(path: Path) -> dict[str, Any]:
    data = path.read_bytes()
    mime_type, _ = mimetypes.guess_type(path.name)
    return {
        "name": path.name,
        "data": base64.b64encode(data).decode("ascii"),
        "mimeType": mime_type or "application/octet-stream",
        "size": len(data),
    }


@click.command()
@click.option("--to", "to", required=True, help="Recipient address(es).")
@click.option("--subject", required=True)
@click.option("--body", default=None, help="HTML body.")
@click.option(
    "--body-file", default=None, type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option(
    "--attach",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Local file to attach. Repeatable.",
)
@click.option("--document", multiple=True, help="Path under DOCUMENTS_DIR to attach. Repeatable.")
@click.option("--thread-id", default=None, help="Send as a reply in this thread.")
@click.option("--reply-to", default=None, help="Override the Reply-To header.")
@click.pass_obj
def send(
    config: MailConfig,
    to: str,
    subject: str,
    body: str | None,
    body_file: Path | None,
    attach: tuple[Path, ...],
    document: tuple[str, ...],
    thread_id: str | None,
    reply_to: str | None,
) -> None:
    """Compose and send an HTML email with optional attachments."""
    if (body is None) == (body_file is None):
        _fail("Provide exactly one of --body or --body-file.")
    content = body_file.read_text(encoding="utf-8") if body_file is not None else body or ""

    payload: dict[str, Any] = {
        "action": "sendEmail",
        "to": to,
        "subject": subject,
        "content": content,
        "threadId": thread_id,
        "replyTo": reply_to,
        "attachments": [_inline_attachment(p) for p in attach],
        "documentAttachments": [
            {"name": Path(doc).name, "file_path": doc} for doc in document
        ],
    }

    async def _send(gmail: GmailClient) -> dict[str, Any]:
        return await _service(gmail, config).handle(payload)

    response = _check_response(_run(config, _send))
    console.print(f"[green]Sent.[/green] Message id: {response.get('messageId')}")


# ── download ───────────────────────────────────────────────────────────────────


@click.command()
@click.argument("message_id")
@click.argument("attachment_id")
@click.option(
    "--output", "-o", required=True, type=click.Path(dir_okay=False, path_type=Path)
)
@click.pass_obj
def download(config: MailConfig, message_id: str, attachment_id: str, output: Path) -> None:
    """Download an attachment's raw bytes to a file."""

    async def _download(gmail: GmailClient) -> Any:
        return await gmail.get_attachment(message_id, attachment_id)

    attachment = _run(config, _download)
    output.write_bytes(attachment.data)
    console.print(f"[green]Saved[/green] {len(attachment.data)} bytes to {output}")


# ── mark-read / trash ──────────────────────────────────────────────────────────


def _target_payload(action_base: str, message_id: str | None, thread_id: str | None) -> dict[str, Any]:
    if (message_id is None) == (thread_id is None):
        _fail("Provide exactly one of --message-id or --thread-id.")
    if thread_id:
        return {"action": f"{action_base}Thread", "threadId": thread_id}
    return {"action": f"{action_base}Message", "messageId": message_id}


@click.command("mark-read")
@click.option("--message-id", default=None)
@click.option("--thread-id", default=None)
@click.pass_obj
def mark_read(config: MailConfig, message_id: str | None, thread_id: str | None) -> None:
    """Remove the UNREAD label from a message or a whole thread."""
    if (message_id is None) == (thread_id is None):
        _fail("Provide exactly one of --message-id or --thread-id.")
    payload = {"action": "markAsRead", "messageId": message_id, "threadId": thread_id}

    async def _mark(gmail: GmailClient) -> dict[str, Any]:
        return await _service(gmail, config).handle(payload)

    _check_response(_run(config, _mark))
    console.print("[green]Marked as read.[/green]")


@click.command()
@click.option("--message-id", default=None)
@click.option("--thread-id", default=None)
@click.pass_obj
def trash(config: MailConfig, message_id: str | None, thread_id: str | None) -> None:
    """Move a message or a whole thread to the trash."""
    payload = _target_payload("trash", message_id, thread_id)

    async def _trash(gmail: GmailClient) -> dict[str, Any]:
        return await _service(gmail, config).handle(payload)

    _check_response(_run(config, _trash))
    console.print("[green]Moved to trash.[/green]")


# ── watch ──────────────────────────────────────────────────────────────────────


class ConsoleHandler:
    """Prints each new or updated conversation as a one-line summary."""

    async def handle(self, conversation: Conversation) -> None:
        unread = f" [bold yellow]({conversation.unread_count} unread)[/bold yellow]" if conversation.unread_count else ""
        console.print(
            f"[cyan]{conversation.last_date}[/cyan]  {conversation.subject}"
            f"  [dim]{conversation.message_count} msg(s)[/dim]{unread}"
        )


@click.command()
@click.option("--query", default=None, help="Gmail search query. Defaults to SYNC_DEFAULT_QUERY.")
@click.option("--interval", default=None, type=int, help="Seconds between polls.")
@click.pass_obj
def watch(config: MailConfig, query: str | None, interval: int | None) -> None:
    """Poll the mailbox and print conversations as they change. Ctrl+C to stop."""
    poll_interval = interval or config.poll_interval
    query = query or config.default_query

    async def _watch(gmail: GmailClient) -> None:
        watcher = MailboxWatcher(
            _orchestrator(gmail, config),
            ConsoleHandler(),
            query=query,
            page_size=config.page_size,
            poll_interval=poll_interval,
        )
        scheduler = create_sync_scheduler(watcher, poll_interval)
        scheduler.start()

        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, watcher.stop)
        except (NotImplementedError, AttributeError):
            pass

        console.print(f"Watching [bold]{query!r}[/bold] every {poll_interval}s")
        try:
            await watcher.wait_stopped()
        finally:
            scheduler.shutdown(wait=False)

    try:
        _run(config, _watch)
    except KeyboardInterrupt:
        # Ctrl+C on Windows (no add_signal_handler) arrives here
        logger.info("Interrupted, goodbye")
