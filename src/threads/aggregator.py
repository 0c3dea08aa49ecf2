"""Thread aggregation. Groups processed emails into conversations."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from src.processing.types import ProcessedEmail
from src.threads.dates import from_epoch_millis, parse_date
from src.threads.normalize import normalize_address, normalize_subject, split_addresses
from src.threads.types import NO_SUBJECT, Conversation

logger = logging.getLogger(__name__)


def email_timestamp(email: ProcessedEmail) -> datetime:
    """Recency of an email: provider receipt time if known, else the Date header."""
    if email.internal_date is not None:
        try:
            return from_epoch_millis(email.internal_date)
        except (OverflowError, OSError, ValueError):
            logger.debug("Email %s has an out-of-range internalDate", email.id)
    return parse_date(email.date)


def email_participants(email: ProcessedEmail) -> set[str]:
    """Normalized From and To addresses of one email."""
    raw = split_addresses(email.sender) + split_addresses(email.to)
    return {addr for addr in (normalize_address(r) for r in raw) if addr}


def conversation_key(email: ProcessedEmail) -> str:
    """Grouping key: the thread id, or normalized subject + sorted participants."""
    if email.thread_id:
        return email.thread_id
    participants = ",".join(sorted(email_participants(email)))
    return f"{normalize_subject(email.subject)}|{participants}"


class ThreadAggregator:
    """Groups a flat list of processed emails into conversations.

    Deterministic for a given input order. Emails are sorted once per
    conversation at the end, not on every insert.

    Usage::

        conversations = ThreadAggregator().aggregate(emails)
    """

    def aggregate(self, emails: Iterable[ProcessedEmail]) -> list[Conversation]:
        """Return conversations sorted by most recent activity first."""
        groups: dict[str, Conversation] = {}

        for email in emails:
            key = conversation_key(email)
            conv = groups.get(key)
            if conv is None:
                conv = Conversation(id=key, thread_id=email.thread_id)
                groups[key] = conv

            conv.emails.append(email)
            conv.message_count += 1
            if not email.is_read:
                conv.unread_count += 1
            conv.participants |= email_participants(email)

            ts = email_timestamp(email)
            if conv.message_count == 1 or ts > conv.last_timestamp:
                conv.last_timestamp = ts
                conv.last_date = email.date

        for conv in groups.values():
            conv.emails.sort(key=lambda e: parse_date(e.date))
            conv.subject = conv.emails[0].subject or NO_SUBJECT

        conversations = sorted(groups.values(), key=lambda c: c.last_timestamp, reverse=True)
        logger.debug("Aggregated into %d conversation(s)", len(conversations))
        return conversations
