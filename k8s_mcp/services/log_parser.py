from __future__ import annotations

import re
from datetime import UTC, datetime

from k8s_mcp.models.log_contracts import LogEntry

_TIMESTAMP_PATTERN = re.compile(
    r"(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>Z|[+-]\d{2}:\d{2})?"
)
_LEVEL_PATTERN = re.compile(r"\b(info|error|warn|debug|fatal)\b", re.IGNORECASE)


def parse_log_line(
    raw_line: str,
    pod: str,
    container: str,
    namespace: str,
    *,
    now: datetime | None = None,
) -> LogEntry:
    """Turn one raw log line into a LogEntry.

    Timestamp and level are best-effort: the first match of each wins, and a
    line without a usable timestamp is stamped with the parse-time clock.
    Malformed input only degrades the extracted fields, it never raises.
    """
    timestamp = now if now is not None else datetime.now(UTC)
    extracted = extract_timestamp(raw_line)
    if extracted is not None:
        timestamp = extracted

    return LogEntry(
        timestamp=timestamp,
        pod=pod,
        container=container,
        namespace=namespace,
        log_level=extract_level(raw_line),
        message=raw_line.strip(),
    )


def extract_timestamp(line: str) -> datetime | None:
    match = _TIMESTAMP_PATTERN.search(line)
    if match is None:
        return None
    text = match.group("base")
    fraction = match.group("fraction")
    if fraction:
        # datetime carries microseconds; nanosecond runtimes emit nine digits.
        text = f"{text}.{fraction[:6].ljust(6, '0')}"
    offset = match.group("offset")
    if offset and offset != "Z":
        text = f"{text}{offset}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def extract_level(line: str) -> str | None:
    match = _LEVEL_PATTERN.search(line)
    if match is None:
        return None
    return match.group(1).upper()
