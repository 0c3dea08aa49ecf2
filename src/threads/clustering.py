"""Similarity clustering. Merges conversations the provider threaded apart.

Answers "does the user perceive these as one conversation?" rather than
"does the provider consider them one thread?". Two conversations merge only
when participants, subject and time all agree; a mailing-list digest with an
identical subject but different senders stays separate.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from src.threads.dates import EPOCH, parse_date
from src.threads.normalize import normalize_address, normalize_subject
from src.threads.types import NO_SUBJECT, Conversation, ConversationCluster

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterThresholds:
    """Merge thresholds; all three must hold for two conversations to cluster."""

    min_participant_overlap: float = 0.5
    min_subject_similarity: float = 0.6
    max_days_apart: float = 30.0

    @classmethod
    def from_env(cls) -> ClusterThresholds:
        """Build thresholds from environment variables, keeping defaults when unset."""
        defaults = cls()
        return cls(
            min_participant_overlap=float(
                os.environ.get("CLUSTER_MIN_PARTICIPANT_OVERLAP", defaults.min_participant_overlap)
            ),
            min_subject_similarity=float(
                os.environ.get("CLUSTER_MIN_SUBJECT_SIMILARITY", defaults.min_subject_similarity)
            ),
            max_days_apart=float(
                os.environ.get("CLUSTER_MAX_DAYS_APART", defaults.max_days_apart)
            ),
        )


# ── Scoring ────────────────────────────────────────────────────────────────────


def subject_similarity(subject_a: str, subject_b: str) -> float:
    """Dice coefficient over the words longer than two characters (0–1)."""
    norm_a = normalize_subject(subject_a)
    norm_b = normalize_subject(subject_b)
    if norm_a == norm_b:
        # Two empty subjects carry no signal.
        return 1.0 if norm_a else 0.0
    if not norm_a or not norm_b:
        return 0.0

    words_a = {w for w in norm_a.split(" ") if len(w) > 2}
    words_b = {w for w in norm_b.split(" ") if len(w) > 2}
    if not words_a or not words_b:
        return 0.0
    return 2 * len(words_a & words_b) / (len(words_a) + len(words_b))


def participant_overlap(participants_a: Iterable[str], participants_b: Iterable[str]) -> float:
    """Jaccard index over normalized address sets (0–1)."""
    set_a = {p for p in (normalize_address(x) for x in participants_a) if p}
    set_b = {p for p in (normalize_address(x) for x in participants_b) if p}
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def should_cluster(
    conv_a: Conversation,
    conv_b: Conversation,
    thresholds: ClusterThresholds | None = None,
) -> bool:
    thresholds = thresholds or ClusterThresholds()
    if participant_overlap(conv_a.participants, conv_b.participants) < thresholds.min_participant_overlap:
        return False
    subject_score = subject_similarity(_comparable_subject(conv_a), _comparable_subject(conv_b))
    if subject_score < thresholds.min_subject_similarity:
        return False
    gap = abs(_recency(conv_a) - _recency(conv_b))
    return gap <= timedelta(days=thresholds.max_days_apart)


def _comparable_subject(conv: Conversation) -> str:
    # The display placeholder is not a subject; two missing subjects must not match.
    return "" if conv.subject == NO_SUBJECT else conv.subject


def _recency(conv: Conversation) -> datetime:
    if conv.last_timestamp != EPOCH:
        return conv.last_timestamp
    return parse_date(conv.last_date)


# ── Clustering ─────────────────────────────────────────────────────────────────


class SimilarityClusterer:
    """Single-link clustering against each cluster's seed conversation.

    Conversations are visited most recent first. Each unclaimed conversation
    seeds a new cluster and claims every later unclaimed conversation that
    matches the seed itself, so a long chain of near-matches cannot drift
    across unrelated subjects.

    Usage::

        clusters = SimilarityClusterer().cluster(conversations)
    """

    def __init__(self, thresholds: ClusterThresholds | None = None) -> None:
        self._thresholds = thresholds or ClusterThresholds()

    def cluster(self, conversations: Iterable[Conversation]) -> list[ConversationCluster]:
        """Partition conversations into clusters, most recent cluster first."""
        ordered = sorted(conversations, key=_recency, reverse=True)
        claimed: set[int] = set()
        clusters: list[ConversationCluster] = []

        for i, seed in enumerate(ordered):
            if i in claimed:
                continue
            claimed.add(i)
            members = [seed]
            for j in range(i + 1, len(ordered)):
                if j in claimed:
                    continue
                if should_cluster(seed, ordered[j], self._thresholds):
                    members.append(ordered[j])
                    claimed.add(j)
            clusters.append(_build_cluster(seed, members))

        merged = sum(1 for c in clusters if len(c.conversations) > 1)
        logger.debug(
            "Clustered %d conversation(s) into %d cluster(s) (%d merged)",
            len(ordered),
            len(clusters),
            merged,
        )
        return sorted(clusters, key=lambda c: c.last_timestamp, reverse=True)


def _build_cluster(seed: Conversation, members: list[Conversation]) -> ConversationCluster:
    members = sorted(members, key=_recency, reverse=True)
    newest = max(members, key=_recency)
    participants: set[str] = set()
    for conv in members:
        participants |= conv.participants
    return ConversationCluster(
        id=f"cluster_{seed.id}",
        conversations=tuple(members),
        subject=seed.subject,
        participants=frozenset(participants),
        message_count=sum(c.message_count for c in members),
        unread_count=sum(c.unread_count for c in members),
        last_date=newest.last_date,
        last_timestamp=_recency(newest),
    )


def flatten_clusters(clusters: Iterable[ConversationCluster]) -> list[Conversation]:
    """Turn clusters back into a flat conversation list for display.

    Single-member clusters yield their member unchanged; larger clusters yield
    one merged conversation holding every member email in chronological order.
    """
    flat: list[Conversation] = []
    for cluster in clusters:
        if len(cluster.conversations) == 1:
            flat.append(cluster.conversations[0])
            continue
        emails = [e for conv in cluster.conversations for e in conv.emails]
        emails.sort(key=lambda e: parse_date(e.date))
        flat.append(
            Conversation(
                id=cluster.id,
                thread_id=cluster.id,
                subject=cluster.subject,
                participants=set(cluster.participants),
                last_date=cluster.last_date,
                last_timestamp=cluster.last_timestamp,
                unread_count=cluster.unread_count,
                message_count=cluster.message_count,
                emails=emails,
            )
        )
    return flat
