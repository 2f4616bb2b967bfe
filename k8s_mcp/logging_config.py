from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog
from structlog.typing import EventDict, Processor

from k8s_mcp.config import AppSettings
from k8s_mcp.telemetry import TELEMETRY_LOGGER_NAME

ROOT_LOGGER_NAME = "k8s_mcp"
LOG_FILE_NAME = "k8s-mcp.log"

_STRUCTLOG_PROCESSORS: tuple[Processor, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.filter_by_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
)


def configure_application_logging(settings: AppSettings) -> Path | None:
    """Route ``k8s_mcp.*`` loggers to the console and, with ``log_dir`` set, a JSON file.

    Returns the log file path, or None for console-only logging. Safe to call
    more than once; existing handlers are replaced.
    """
    structlog.configure(
        processors=list(_STRUCTLOG_PROCESSORS),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(logging.DEBUG)
    package_logger.propagate = False
    for stale_handler in list(package_logger.handlers):
        package_logger.removeHandler(stale_handler)
        stale_handler.close()

    package_logger.addHandler(_console_handler(sys.stdout, settings.log_level))

    log_file: Path | None = None
    if settings.log_dir is not None:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = settings.log_dir / LOG_FILE_NAME
        package_logger.addHandler(_json_file_handler(log_file))

    # Telemetry shares the handlers above but is switched off separately.
    logging.getLogger(TELEMETRY_LOGGER_NAME).setLevel(
        logging.INFO if settings.telemetry_enabled else logging.WARNING
    )

    package_logger.info(
        "logging configured console_level=%s file=%s telemetry=%s",
        settings.log_level,
        log_file or "-",
        "on" if settings.telemetry_enabled else "off",
    )
    return log_file


def _console_handler(stream: TextIO, level_name: str) -> logging.Handler:
    handler = logging.StreamHandler(stream=stream)
    handler.setLevel(logging.getLevelNamesMapping().get(level_name.upper(), logging.INFO))
    handler.setFormatter(
        _formatter(structlog.dev.ConsoleRenderer(colors=_is_tty(stream)))
    )
    return handler


def _json_file_handler(path: Path) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        _formatter(
            structlog.processors.JSONRenderer(sort_keys=True),
            _record_origin,
            structlog.processors.format_exc_info,
        )
    )
    return handler


def _formatter(renderer: Processor, *before_render: Processor) -> logging.Formatter:
    # Records from plain stdlib loggers go through the same pre-chain as structlog events.
    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            *before_render,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _record_origin(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict.update(
            module=record.module,
            lineno=record.lineno,
            thread_name=record.threadName,
        )
    return event_dict


def _is_tty(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False
