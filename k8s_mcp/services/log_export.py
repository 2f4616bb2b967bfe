from __future__ import annotations

import csv
import io
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from pydantic import TypeAdapter

from k8s_mcp.models.log_contracts import LogEntry
from k8s_mcp.services.errors import UnsupportedFormatError

CSV_HEADER: tuple[str, ...] = ("Timestamp", "Pod", "Container", "Namespace", "Level", "Message")

_ENTRY_LIST_ADAPTER: TypeAdapter[list[LogEntry]] = TypeAdapter(list[LogEntry])


def export_entries(entries: Sequence[LogEntry], export_format: str) -> bytes:
    exporter = _EXPORTERS.get(export_format.strip().lower())
    if exporter is None:
        raise UnsupportedFormatError(f"unsupported export format: {export_format}")
    return exporter(entries)


def supported_formats() -> list[str]:
    return sorted(_EXPORTERS)


def format_rfc3339(timestamp: datetime) -> str:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    rendered = timestamp.isoformat(timespec="seconds")
    if rendered.endswith("+00:00"):
        return f"{rendered[:-6]}Z"
    return rendered


def _export_json(entries: Sequence[LogEntry]) -> bytes:
    return _ENTRY_LIST_ADAPTER.dump_json(list(entries), by_alias=True) + b"\n"


def _export_ndjson(entries: Sequence[LogEntry]) -> bytes:
    lines = (entry.model_dump_json(by_alias=True) + "\n" for entry in entries)
    return "".join(lines).encode("utf-8")


def _export_csv(entries: Sequence[LogEntry]) -> bytes:
    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADER)
    for entry in entries:
        writer.writerow(
            (
                format_rfc3339(entry.timestamp),
                entry.pod,
                entry.container,
                entry.namespace,
                entry.log_level or "",
                entry.message,
            )
        )
    return buffer.getvalue().encode("utf-8")


def _export_plaintext(entries: Sequence[LogEntry]) -> bytes:
    lines = [
        (
            f"[{format_rfc3339(entry.timestamp)}] [{entry.namespace}] "
            f"[{entry.pod}/{entry.container}] [{entry.log_level or ''}] {entry.message}\n"
        )
        for entry in entries
    ]
    return "".join(lines).encode("utf-8")


_EXPORTERS: dict[str, Callable[[Sequence[LogEntry]], bytes]] = {
    "json": _export_json,
    "ndjson": _export_ndjson,
    "csv": _export_csv,
    "plaintext": _export_plaintext,
    "text": _export_plaintext,
}
