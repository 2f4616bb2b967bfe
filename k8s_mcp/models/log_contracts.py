from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

EXPORT_FIELD_ORDER: tuple[str, ...] = (
    "timestamp",
    "pod",
    "container",
    "namespace",
    "level",
    "message",
)


class LogEntry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    timestamp: datetime
    pod: str
    container: str
    namespace: str
    log_level: str | None = Field(default=None, alias="level")
    message: str


@dataclass(frozen=True)
class LogQuery:
    namespace: str
    pod: str
    container: str = ""
    since_time: datetime | None = None
    since_seconds: int | None = None
    tail: int | None = None
    pattern: str | None = None
    log_level: str | None = None
