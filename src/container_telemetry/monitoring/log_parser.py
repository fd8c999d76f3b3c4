"""Parser for container log output.

Lines come from the runtime with a leading RFC 3339 timestamp:

    2024-05-01T12:00:00.123456789Z GET /health 200

A line whose first token is not a timestamp keeps its full text as the message
and is stamped with the collection time.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime

from container_telemetry.core.schemas import LogEntry, LogLevel, utcnow

_EXTRA_FRACTION = re.compile(r"\.(\d{6})\d+")

# Checked in order; the first keyword found in the lowercased message wins.
_LEVEL_KEYWORDS = (
    ("error", LogLevel.ERROR),
    ("warn", LogLevel.WARN),
    ("debug", LogLevel.DEBUG),
)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp with up to nanosecond precision.

    Returns None when the value is not a timestamp. Values without an offset
    are taken as UTC.
    """
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    # Python accepts at most microseconds; trim any extra fractional digits.
    text = _EXTRA_FRACTION.sub(r".\1", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def detect_level(message: str) -> LogLevel:
    lowered = message.lower()
    for keyword, level in _LEVEL_KEYWORDS:
        if keyword in lowered:
            return level
    return LogLevel.INFO


def parse_log_line(
    line: str, source: str = "stdout", now: datetime | None = None
) -> LogEntry | None:
    """Parse one log line into a LogEntry.

    Args:
        line: Raw line, optionally prefixed by a timestamp and a space
        source: Output stream the line was read from
        now: Timestamp used when the line carries none (defaults to the current time)

    Returns:
        LogEntry, or None for blank lines
    """
    text = line.rstrip("\r\n")
    if not text.strip():
        return None

    timestamp: datetime | None = None
    message = text
    head, sep, rest = text.partition(" ")
    if sep:
        timestamp = parse_timestamp(head)
        if timestamp is not None:
            message = rest

    return LogEntry(
        timestamp=timestamp or now or utcnow(),
        message=message,
        log_level=detect_level(message),
        source=source,
    )


def parse_log_output(
    output: str, source: str = "stdout", now: datetime | None = None
) -> list[LogEntry]:
    """Parse every non-blank line of a log dump."""
    stamp = now or utcnow()
    entries: list[LogEntry] = []
    for line in output.splitlines():
        entry = parse_log_line(line, source=source, now=stamp)
        if entry is not None:
            entries.append(entry)
    return entries
