from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from time import perf_counter
from typing import Any, cast

from pydantic import ValidationError

from k8s_mcp.models.command_contracts import (
    LOG_COMMANDS,
    REQUIRED_FIELDS,
    Command,
    CommandCatalogEntry,
    CommandKind,
    LogOptions,
    Response,
)
from k8s_mcp.models.log_contracts import LogEntry, LogQuery
from k8s_mcp.services.errors import (
    CommandError,
    InvalidArgumentError,
    UnsupportedCommandError,
)
from k8s_mcp.services.log_export import supported_formats
from k8s_mcp.services.log_pipeline import LogPipeline, parse_since, since_window
from k8s_mcp.services.resource_store import ResourceStore
from k8s_mcp.telemetry import TelemetryClient

LOGGER = logging.getLogger("k8s_mcp.dispatcher")

COMMAND_DESCRIPTIONS: dict[CommandKind, str] = {
    "list": "List resources of a kind, optionally within one namespace.",
    "get": "Fetch one resource by kind and name.",
    "create": "Create a resource from the JSON document in data.",
    "delete": "Delete one resource by kind and name.",
    "logs": "Retrieve parsed log entries from a pod.",
    "search_logs": "Retrieve log entries whose message matches a regular expression.",
    "export_logs": f"Export filtered log entries; formats: {', '.join(supported_formats())}.",
}

_FIELD_LABELS: dict[str, str] = {
    "resource_type": "resource type",
    "name": "name",
    "payload": "data",
    "namespace": "namespace",
    "log_options.pod": "pod",
    "log_options.pattern": "search pattern",
    "log_options.format": "export format",
}


class CommandDispatcher:
    def __init__(
        self,
        *,
        resource_store: ResourceStore,
        log_pipeline: LogPipeline,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._resource_store = resource_store
        self._log_pipeline = log_pipeline
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def list_commands(self) -> list[CommandCatalogEntry]:
        return [
            CommandCatalogEntry(
                name=name,
                description=description,
                target="logs" if name in LOG_COMMANDS else "resources",
                required_fields=[_FIELD_LABELS[field] for field in REQUIRED_FIELDS[name]],
            )
            for name, description in COMMAND_DESCRIPTIONS.items()
        ]

    def handle_raw(self, body: bytes | str) -> Response:
        try:
            command = parse_command(body)
        except InvalidArgumentError as exc:
            return _error_response(exc)
        return self.handle(command)

    def handle(self, command: Command) -> Response:
        started_at = perf_counter()
        self._telemetry.emit(
            "command.execute.start",
            command_kind=command.kind,
            resource_type=command.resource_type or None,
            namespace=command.namespace or None,
        )
        try:
            message, data = self.execute(command)
        except CommandError as exc:
            LOGGER.info(
                "command failed kind=%s code=%s error=%s",
                command.kind,
                exc.code,
                exc,
            )
            self._telemetry.emit_elapsed(
                "command.execute.error",
                started_at,
                command_kind=command.kind,
                error_code=exc.code,
            )
            return _error_response(exc)
        except Exception as exc:
            LOGGER.exception("command crashed kind=%s", command.kind)
            self._telemetry.emit_elapsed(
                "command.execute.error",
                started_at,
                command_kind=command.kind,
                error_code="internal_error",
                error_type=type(exc).__name__,
            )
            return Response(success=False, error=f"internal error: {exc}")

        self._telemetry.emit_elapsed(
            "command.execute.finish", started_at, command_kind=command.kind
        )
        return Response(success=True, message=message, data=data)

    def execute(self, command: Command) -> tuple[str, Any]:
        """Validate and run one command, returning ``(message, data)``.

        Raises a CommandError subclass on failure; nothing is sent to the
        cluster until the required fields for the command kind are present.
        """
        kind = validate_command(command)

        if kind == "list":
            return self._handle_list(command)
        if kind == "get":
            return self._handle_get(command)
        if kind == "create":
            return self._handle_create(command)
        if kind == "delete":
            return self._handle_delete(command)
        if kind == "logs":
            return self._handle_logs(command)
        if kind == "search_logs":
            return self._handle_search_logs(command)
        return self._handle_export_logs(command)

    def _handle_list(self, command: Command) -> tuple[str, Any]:
        resources = self._resource_store.list(command.resource_type, command.namespace)
        return f"Successfully listed {command.resource_type}", resources

    def _handle_get(self, command: Command) -> tuple[str, Any]:
        resource = self._resource_store.get(
            command.resource_type, command.namespace, command.name
        )
        return f"Successfully retrieved {command.resource_type} '{command.name}'", resource

    def _handle_create(self, command: Command) -> tuple[str, Any]:
        created = self._resource_store.create(
            command.resource_type, command.namespace, command.payload
        )
        return f"Successfully created {command.resource_type}", created

    def _handle_delete(self, command: Command) -> tuple[str, Any]:
        self._resource_store.delete(command.resource_type, command.namespace, command.name)
        deleted = {
            "kind": command.resource_type,
            "name": command.name,
            "namespace": command.namespace,
        }
        return f"Successfully deleted {command.resource_type} '{command.name}'", deleted

    def _handle_logs(self, command: Command) -> tuple[str, Any]:
        options = _log_options(command)
        query = build_log_query(command.namespace, options)
        entries = self._log_pipeline.retrieve(query)
        return f"Successfully retrieved logs from pod '{options.pod}'", _entries_payload(entries)

    def _handle_search_logs(self, command: Command) -> tuple[str, Any]:
        options = _log_options(command)
        query = build_log_query(command.namespace, options)
        entries = self._log_pipeline.retrieve(query)
        return f"Successfully searched logs from pod '{options.pod}'", _entries_payload(entries)

    def _handle_export_logs(self, command: Command) -> tuple[str, Any]:
        options = _log_options(command)
        query = build_log_query(command.namespace, options)
        entries = self._log_pipeline.retrieve(query)
        exported = self._log_pipeline.export(entries, options.format)
        message = (
            f"Successfully exported logs from pod '{options.pod}' in {options.format} format"
        )
        return message, {"exported_logs": exported.decode("utf-8")}


def parse_command(body: bytes | str) -> Command:
    try:
        return Command.model_validate_json(body)
    except ValidationError as exc:
        raise InvalidArgumentError(f"failed to parse command: {_first_error(exc)}") from exc


def validate_command(command: Command) -> CommandKind:
    if command.kind not in REQUIRED_FIELDS:
        raise UnsupportedCommandError(f"unsupported command type: {command.kind}")
    kind = cast(CommandKind, command.kind)

    missing = [field for field in REQUIRED_FIELDS[kind] if _is_missing(command, field)]
    if missing:
        labels = [_FIELD_LABELS[field] for field in missing]
        verb = "is" if len(labels) == 1 else "are"
        raise InvalidArgumentError(f"{' and '.join(labels)} {verb} required for '{kind}'")
    return kind


def build_log_query(
    namespace: str,
    options: LogOptions,
    *,
    now: datetime | None = None,
) -> LogQuery:
    since_time: datetime | None = None
    since_seconds: int | None = None
    if options.since:
        # Validates range and form for both shapes; a duration is then sent as-is.
        resolved = parse_since(options.since, now=now if now is not None else datetime.now(UTC))
        window = since_window(options.since)
        if window is None:
            since_time = resolved
        else:
            since_seconds = max(1, math.ceil(window.total_seconds()))
    return LogQuery(
        namespace=namespace,
        pod=options.pod,
        container=options.container,
        since_time=since_time,
        since_seconds=since_seconds,
        tail=options.tail if options.tail > 0 else None,
        pattern=options.pattern or None,
        log_level=options.log_level or None,
    )


def _is_missing(command: Command, field: str) -> bool:
    if field.startswith("log_options."):
        if command.log_options is None:
            return True
        value = getattr(command.log_options, field.removeprefix("log_options."))
    else:
        value = getattr(command, field)
    return value is None or value == ""


def _log_options(command: Command) -> LogOptions:
    # validate_command guarantees log_options for log commands.
    assert command.log_options is not None
    return command.log_options


def _entries_payload(entries: list[LogEntry]) -> list[dict[str, Any]]:
    return [entry.model_dump(mode="json", by_alias=True) for entry in entries]


def _error_response(exc: CommandError) -> Response:
    return Response(success=False, error=str(exc) or exc.code)


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"{location}: {first.get('msg', 'invalid value')}"
    return str(first.get("msg", "invalid value"))
