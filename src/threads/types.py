"""Conversation and cluster records produced by threading and clustering."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.processing.types import ProcessedEmail
from src.threads.dates import EPOCH

#: Display subject for conversations whose first email has none.
NO_SUBJECT = "No Subject"


@dataclass
class Conversation:
    """All messages sharing a provider thread id (or a synthesized fallback key).

    Invariants once aggregation finishes:
      - ``message_count == len(emails)``
      - ``unread_count`` counts emails whose ``is_read`` is False
      - ``emails`` are in ascending chronological order
      - ``last_date`` is the date string of the most recent email; recency is
        measured by ``last_timestamp`` (provider receipt time when known)
    """

    id: str
    subject: str = ""
    participants: set[str] = field(default_factory=set)
    last_date: str = ""
    last_timestamp: datetime = EPOCH
    unread_count: int = 0
    message_count: int = 0
    emails: list[ProcessedEmail] = field(default_factory=list)
    thread_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "threadId": self.thread_id or self.id,
            "subject": self.subject,
            "participants": sorted(self.participants),
            "lastDate": self.last_date,
            "unreadCount": self.unread_count,
            "messageCount": self.message_count,
            "emails": [e.to_dict() for e in self.emails],
        }


@dataclass(frozen=True)
class ConversationCluster:
    """Display-level merge of conversations judged to be one human exchange.

    ``conversations`` are ordered most recent first; the first member is the
    seed whose subject the cluster carries.
    """

    id: str
    conversations: tuple[Conversation, ...]
    subject: str
    participants: frozenset[str]
    message_count: int
    unread_count: int
    last_date: str
    last_timestamp: datetime = EPOCH

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject": self.subject,
            "participants": sorted(self.participants),
            "messageCount": self.message_count,
            "unreadCount": self.unread_count,
            "lastDate": self.last_date,
            "conversations": [c.to_dict() for c in self.conversations],
        }
