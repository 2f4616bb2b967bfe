from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager
from datetime import UTC, datetime, timedelta
from typing import Protocol

from k8s_mcp.models.log_contracts import LogEntry, LogQuery
from k8s_mcp.services.errors import InvalidArgumentError
from k8s_mcp.services.log_export import export_entries
from k8s_mcp.services.log_parser import parse_log_line

LOGGER = logging.getLogger("k8s_mcp.logs")

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_PATTERN = re.compile(rf"[+-]?(?:{_DURATION_COMPONENT.pattern})+")


class LogBackend(Protocol):
    def open_log_stream(self, query: LogQuery) -> AbstractContextManager[Iterator[str]]:
        ...


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration such as ``90s``, ``1h30m`` or ``1.5h``."""
    text = value.strip()
    if text in {"0", "+0", "-0"}:
        return timedelta(0)
    if not _DURATION_PATTERN.fullmatch(text):
        raise ValueError(f"invalid duration: {value!r}")

    sign = -1.0 if text.startswith("-") else 1.0
    seconds = sum(
        float(amount) * _DURATION_UNITS[unit]
        for amount, unit in _DURATION_COMPONENT.findall(text.lstrip("+-"))
    )
    try:
        return timedelta(seconds=sign * seconds)
    except OverflowError as exc:
        raise ValueError(f"duration out of range: {value!r}") from exc


def since_window(value: str) -> timedelta | None:
    """Return the look-back window when ``since`` is a duration, None when it is not one."""
    try:
        window = parse_duration(value)
    except ValueError:
        return None
    if window < timedelta(0):
        raise InvalidArgumentError(
            f"invalid 'since' parameter: {value!r} (duration must not be negative)"
        )
    return window


def parse_since(value: str, *, now: datetime | None = None) -> datetime:
    """Resolve ``since`` to an absolute instant.

    A duration is read relative to ``now``; anything else must be an RFC3339
    timestamp with an explicit offset.
    """
    reference = now if now is not None else datetime.now(UTC)
    window = since_window(value)
    if window is not None:
        try:
            return reference - window
        except OverflowError as exc:
            raise InvalidArgumentError(
                f"invalid 'since' parameter: {value!r} (duration out of range)"
            ) from exc

    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise InvalidArgumentError(f"invalid 'since' parameter: {value!r}") from exc
    if parsed.tzinfo is None:
        raise InvalidArgumentError(
            f"invalid 'since' parameter: {value!r} (timestamp needs a timezone offset)"
        )
    return parsed


def compile_pattern(pattern: str | None) -> re.Pattern[str] | None:
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise InvalidArgumentError(f"invalid regex pattern: {exc}") from exc


class LogPipeline:
    def __init__(self, backend: LogBackend) -> None:
        self._backend = backend

    def retrieve(self, query: LogQuery) -> list[LogEntry]:
        entries = list(self.stream(query))
        LOGGER.info(
            "logs retrieved namespace=%s pod=%s container=%s entries=%s",
            query.namespace,
            query.pod,
            query.container or "-",
            len(entries),
        )
        return entries

    def stream(self, query: LogQuery) -> Iterator[LogEntry]:
        # Compiled eagerly so a bad pattern fails before the stream is opened.
        matcher = compile_pattern(query.pattern)
        return self._iter_entries(query, matcher)

    def export(self, entries: Sequence[LogEntry], export_format: str) -> bytes:
        return export_entries(entries, export_format)

    def _iter_entries(
        self,
        query: LogQuery,
        matcher: re.Pattern[str] | None,
    ) -> Iterator[LogEntry]:
        wanted_level = query.log_level.casefold() if query.log_level else None
        with self._backend.open_log_stream(query) as lines:
            for line in lines:
                entry = parse_log_line(line, query.pod, query.container, query.namespace)
                if matcher is not None and matcher.search(entry.message) is None:
                    continue
                if wanted_level is not None and (entry.log_level or "").casefold() != wanted_level:
                    continue
                yield entry
