"""Date parsing for ordering messages and conversations."""

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

#: Sort key for messages whose date cannot be parsed; they order first.
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def parse_date(value: str | None) -> datetime:
    """Parse an RFC 2822 ``Date`` header or ISO-8601 string into an aware datetime.

    Naive values are treated as UTC. Unparseable input maps to EPOCH.
    """
    if not value:
        return EPOCH
    value = value.strip()
    parsed: datetime | None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        parsed = None
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def from_epoch_millis(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=UTC)
