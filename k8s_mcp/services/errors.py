from __future__ import annotations


class CommandError(Exception):
    code = "command_failed"


class InvalidArgumentError(CommandError):
    code = "invalid_argument"


class UnsupportedKindError(CommandError):
    code = "unsupported_kind"


class UnsupportedCommandError(CommandError):
    code = "unsupported_command"


class UnsupportedFormatError(CommandError):
    code = "unsupported_format"


class NotFoundError(CommandError):
    code = "not_found"


class ConflictError(CommandError):
    code = "conflict"


class BackendUnavailableError(CommandError):
    code = "backend_unavailable"


class StreamError(BackendUnavailableError):
    code = "stream_error"
