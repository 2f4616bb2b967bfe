from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

CommandKind = Literal[
    "list",
    "get",
    "create",
    "delete",
    "logs",
    "search_logs",
    "export_logs",
]

LOG_COMMANDS: frozenset[str] = frozenset({"logs", "search_logs", "export_logs"})

# Dotted names refer to LogOptions fields.
REQUIRED_FIELDS: dict[CommandKind, tuple[str, ...]] = {
    "list": ("resource_type",),
    "get": ("resource_type", "name"),
    "create": ("resource_type", "payload"),
    "delete": ("resource_type", "name"),
    "logs": ("namespace", "log_options.pod"),
    "search_logs": ("namespace", "log_options.pod", "log_options.pattern"),
    "export_logs": ("namespace", "log_options.pod", "log_options.format"),
}


class LogOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pod: str = ""
    container: str = ""
    since: str = ""
    tail: int = Field(default=0, ge=0)
    pattern: str = ""
    log_level: str = ""
    format: str = ""


class Command(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    kind: str = Field(default="", alias="type")
    resource_type: str = Field(default="", alias="resource")
    name: str = ""
    namespace: str = ""
    payload: Any = Field(default=None, alias="data")
    log_options: LogOptions | None = None


class CommandCatalogEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: CommandKind
    description: str
    target: Literal["resources", "logs"]
    required_fields: list[str]


class Response(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    message: str | None = None
    data: Any = None
    error: str | None = None

    @model_validator(mode="after")
    def _check_outcome(self) -> Response:
        if self.success:
            if self.error:
                raise ValueError("successful responses must not carry an error")
            return self
        if not self.error:
            raise ValueError("failed responses require a non-empty error")
        if self.data is not None:
            raise ValueError("failed responses must not carry data")
        return self

    def to_wire(self) -> dict[str, Any]:
        # Only top-level empty fields are dropped; documents in data keep their nulls.
        wire: dict[str, Any] = {"success": self.success}
        if self.message is not None:
            wire["message"] = self.message
        if self.data is not None:
            wire["data"] = self.data
        if self.error is not None:
            wire["error"] = self.error
        return wire
