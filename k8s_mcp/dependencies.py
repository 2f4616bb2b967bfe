from __future__ import annotations

from functools import lru_cache

from k8s_mcp.config import AppSettings, load_settings
from k8s_mcp.services.command_dispatcher import CommandDispatcher
from k8s_mcp.services.kube_backend import KubernetesBackend
from k8s_mcp.services.log_pipeline import LogPipeline
from k8s_mcp.services.resource_kinds import ResourceKindRegistry, load_resource_kinds
from k8s_mcp.services.resource_store import ResourceStore
from k8s_mcp.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_registry() -> ResourceKindRegistry:
    return load_resource_kinds(get_settings().resource_kinds_file)


@lru_cache(maxsize=1)
def get_backend() -> KubernetesBackend:
    settings = get_settings()
    return KubernetesBackend.from_kubeconfig(
        settings.kubeconfig,
        request_timeout_seconds=settings.request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_dispatcher() -> CommandDispatcher:
    backend = get_backend()
    return CommandDispatcher(
        resource_store=ResourceStore(backend, get_registry()),
        log_pipeline=LogPipeline(backend),
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_dispatcher.cache_clear()
    get_backend.cache_clear()
    get_registry.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
