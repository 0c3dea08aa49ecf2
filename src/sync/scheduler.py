"""APScheduler setup for periodic mailbox polling."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from src.sync.watcher import MailboxWatcher

logger = logging.getLogger(__name__)


def create_sync_scheduler(watcher: MailboxWatcher, interval_seconds: float) -> AsyncIOScheduler:
    """Return an AsyncIOScheduler that runs ``watcher.poll`` every interval.

    The first poll runs immediately. Overlapping runs are coalesced so a slow
    sync never stacks up polls. The caller is responsible for calling scheduler.start() and scheduler.shutdown().
    """
    if interval_seconds <= 0:
        logger.warning("Invalid poll interval %r; defaulting to 60s", interval_seconds)
        interval_seconds = 60

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        watcher.poll,
        "interval",
        seconds=interval_seconds,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(),
    )
    logger.info("Mailbox poll scheduled every %ss", interval_seconds)
    return scheduler
