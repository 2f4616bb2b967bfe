from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
TELEMETRY_SINKS: frozenset[str] = frozenset({"none", "log"})
_OPTIONAL_PATH_FIELDS: tuple[str, ...] = ("kubeconfig", "resource_kinds_file", "log_dir")
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled",)


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return {1: True, 0: False}.get(value, default)
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


class AppSettings(BaseSettings):
    """
    Runtime configuration, read from ``K8S_MCP_*`` environment variables or ``.env``.

    Cluster credentials themselves are not configured here; they come from the
    kubeconfig file (or the in-cluster service account when none is given).
    """

    model_config = SettingsConfigDict(
        env_prefix="K8S_MCP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # HTTP binding.
    host: str = Field(default="0.0.0.0", description="Interface the HTTP server binds to.")
    port: int = Field(default=8080, ge=1, le=65535, description="Port the HTTP server listens on.")

    # Cluster access.
    kubeconfig: Path | None = Field(
        default=None,
        description=(
            "Path to a kubeconfig file. Empty means in-cluster config, then ~/.kube/config."
        ),
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout applied to every Kubernetes API call, log streams included.",
    )
    resource_kinds_file: Path | None = Field(
        default=None,
        description="Optional YAML file with extra resource kinds merged over the built-in table.",
    )

    # Logging and telemetry.
    log_level: str = Field(default="INFO", description="Console log level.")
    log_dir: Path | None = Field(
        default=None,
        description="Directory for the JSON log file. Console-only logging when unset.",
    )
    telemetry_enabled: bool = Field(
        default=False,
        description="Emit command and HTTP telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="Telemetry destination: `none` or `log` (structured log lines).",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("K8S_MCP_LOG_LEVEL must be a string.")
        normalized = value.strip().upper()
        if normalized in LOG_LEVELS:
            return normalized
        raise ValueError(f"K8S_MCP_LOG_LEVEL must be one of: {', '.join(sorted(LOG_LEVELS))}.")

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("K8S_MCP_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in TELEMETRY_SINKS:
            return normalized
        raise ValueError("K8S_MCP_TELEMETRY_SINK must be set to: none, log.")

    @field_validator(*_OPTIONAL_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str) and not value.strip():
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)


def _validate_files(settings: AppSettings) -> None:
    errors: list[str] = []
    if settings.kubeconfig is not None and not settings.kubeconfig.is_file():
        errors.append(f"Kubeconfig not found: {settings.kubeconfig}")
    if settings.resource_kinds_file is not None and not settings.resource_kinds_file.is_file():
        errors.append(f"Resource kinds file not found: {settings.resource_kinds_file}")

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid configuration:\n{bullets}")


def load_settings(**overrides: Any) -> AppSettings:
    settings = AppSettings(**overrides)
    _validate_files(settings)
    return settings
