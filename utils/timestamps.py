"""Timestamp helpers shared by the engine, scheduler and channel clients.

Every datetime that crosses a module boundary is timezone-aware UTC. The
helpers here are the only place that converts between that canonical form
and the textual formats the outside world hands us:
- Chat message timestamps ("1712345678.000200" — seconds.micro-ish)
- The dialog date layout used for incident start times
- Naive datetimes coming from older callers (assumed UTC)
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]

DATE_LAYOUT = "%Y-%m-%dT%H:%M:%S%z"

_MESSAGE_TS_RE = re.compile(r"^(\d+)\.(\d+)$")


class TimestampParseError(ValueError):
    """Raised when a textual timestamp does not match the expected format.

    Includes the raw value so callers can log it without re-wrapping.
    """

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


def utc_now() -> datetime:
    """Default clock. Injected everywhere so tests can pin time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime.

    Naive datetimes are assumed to already be UTC, which is how the store
    and the dialog layer write them.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_message_ts(raw: str) -> datetime:
    """Convert a chat message timestamp into an aware UTC datetime.

    The chat platform identifies messages by "<unix seconds>.<fraction>".
    The fractional part is a per-second sequence rather than a true
    sub-second value, so it is kept only to preserve ordering between
    messages posted within the same second.

    Args:
        raw: Timestamp string such as "1712345678.000200".

    Returns:
        Aware UTC datetime.

    Raises:
        TimestampParseError: If raw is empty or not "<digits>.<digits>".
    """
    if not raw:
        raise TimestampParseError("Empty message timestamp", raw=raw)

    match = _MESSAGE_TS_RE.match(raw.strip())
    if not match:
        raise TimestampParseError(f"Malformed message timestamp '{raw}'", raw=raw)

    seconds = int(match.group(1))
    fraction = match.group(2)[:6].ljust(6, "0")
    return datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(
        microseconds=int(fraction)
    )


def format_message_ts(value: datetime) -> str:
    """Inverse of parse_message_ts — used by the in-memory client."""
    value = ensure_utc(value)
    return f"{int(value.timestamp())}.{value.microsecond:06d}"


def parse_date_layout(raw: str) -> datetime:
    """Parse an incident start time entered as "2006-01-02T15:04:05-0700".

    Raises:
        TimestampParseError: If the text does not match DATE_LAYOUT.
    """
    try:
        return ensure_utc(datetime.strptime(raw.strip(), DATE_LAYOUT))
    except ValueError as exc:
        raise TimestampParseError(
            f"Start time '{raw}' does not match layout {DATE_LAYOUT}", raw=raw
        ) from exc


def format_date_layout(value: datetime) -> str:
    return ensure_utc(value).strftime(DATE_LAYOUT)


def elapsed_whole_hours(since: datetime, now: datetime) -> int:
    """Wall-clock hours between since and now, truncated toward zero.

    Used for the SLA grace window comparison, which is hour-denominated.
    """
    delta = ensure_utc(now) - ensure_utc(since)
    return int(delta.total_seconds() / 3600)


def is_fresher_than(candidate: datetime | None, now: datetime, window: timedelta) -> bool:
    """True when candidate falls strictly inside the last `window` before now.

    A candidate exactly `window` old is considered stale. This is the single
    staleness rule used for pinned status updates.
    """
    if candidate is None:
        return False
    return ensure_utc(candidate) > ensure_utc(now) - window
