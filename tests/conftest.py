from __future__ import annotations

import copy
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import pytest
from fastapi.testclient import TestClient

from k8s_mcp.dependencies import get_dispatcher, reset_cached_dependencies
from k8s_mcp.main import create_app
from k8s_mcp.models.log_contracts import LogQuery
from k8s_mcp.services.command_dispatcher import CommandDispatcher
from k8s_mcp.services.errors import CommandError, ConflictError, NotFoundError, StreamError
from k8s_mcp.services.log_pipeline import LogPipeline
from k8s_mcp.services.resource_kinds import ResourceCoordinates, ResourceKindRegistry
from k8s_mcp.services.resource_store import ResourceStore

SAMPLE_LOG_LINES: tuple[str, ...] = (
    "2024-01-15T10:30:45.123456789Z INFO starting server on :8080\n",
    "2024-01-15T10:30:46Z ERROR failed to connect to database\n",
    "2024-01-15T10:30:47.5+02:00 warn retrying connection\n",
    "no timestamp here, debug output\n",
    "2024-01-15T10:30:49Z INFO request failed with status 500\n",
)


class FakeClusterBackend:
    """In-memory stand-in for both the resource and the log backend."""

    def __init__(self, log_lines: tuple[str, ...] = SAMPLE_LOG_LINES) -> None:
        self.documents: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.log_lines: list[str] = list(log_lines)
        self.log_queries: list[LogQuery] = []
        self.open_error: CommandError | None = None
        self.fail_after_lines: int | None = None
        self.streams_opened = 0
        self.streams_closed = 0

    def seed(self, resource: str, namespace: str, document: dict[str, Any]) -> None:
        name = document["metadata"]["name"]
        self.documents[(resource, namespace, name)] = copy.deepcopy(document)

    def list(self, coordinates: ResourceCoordinates, namespace: str) -> dict[str, Any]:
        self.calls.append(("list", coordinates.resource, namespace))
        items = [
            copy.deepcopy(document)
            for (resource, document_namespace, _), document in sorted(self.documents.items())
            if resource == coordinates.resource and (not namespace or document_namespace == namespace)
        ]
        return {"apiVersion": coordinates.api_version, "kind": "List", "items": items}

    def get(self, coordinates: ResourceCoordinates, namespace: str, name: str) -> dict[str, Any]:
        self.calls.append(("get", coordinates.resource, namespace))
        document = self.documents.get((coordinates.resource, namespace, name))
        if document is None:
            raise NotFoundError(f'{coordinates.resource} "{name}" not found')
        return copy.deepcopy(document)

    def create(
        self,
        coordinates: ResourceCoordinates,
        namespace: str,
        document: dict[str, Any],
    ) -> dict[str, Any]:
        self.calls.append(("create", coordinates.resource, namespace))
        name = document.get("metadata", {}).get("name", "")
        key = (coordinates.resource, namespace, name)
        if key in self.documents:
            raise ConflictError(f'{coordinates.resource} "{name}" already exists')
        stored = copy.deepcopy(document)
        stored.setdefault("metadata", {})["uid"] = f"uid-{len(self.documents) + 1}"
        self.documents[key] = stored
        return copy.deepcopy(stored)

    def delete(self, coordinates: ResourceCoordinates, namespace: str, name: str) -> None:
        self.calls.append(("delete", coordinates.resource, namespace))
        if self.documents.pop((coordinates.resource, namespace, name), None) is None:
            raise NotFoundError(f'{coordinates.resource} "{name}" not found')

    @contextmanager
    def open_log_stream(self, query: LogQuery) -> Iterator[Iterator[str]]:
        self.log_queries.append(query)
        if self.open_error is not None:
            raise self.open_error
        self.streams_opened += 1
        try:
            yield self._lines()
        finally:
            self.streams_closed += 1

    def _lines(self) -> Iterator[str]:
        for index, line in enumerate(self.log_lines):
            if self.fail_after_lines is not None and index == self.fail_after_lines:
                raise StreamError("error reading logs: connection reset by peer")
            yield line


@pytest.fixture
def fake_backend() -> FakeClusterBackend:
    backend = FakeClusterBackend()
    backend.seed(
        "pods",
        "default",
        {"apiVersion": "v1", "kind": "Pod", "metadata": {"name": "web-1", "namespace": "default"}},
    )
    backend.seed(
        "deployments",
        "default",
        {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": "web", "namespace": "default"},
            "spec": {"replicas": 2},
        },
    )
    return backend


@pytest.fixture
def dispatcher(fake_backend: FakeClusterBackend) -> CommandDispatcher:
    return CommandDispatcher(
        resource_store=ResourceStore(fake_backend, ResourceKindRegistry()),
        log_pipeline=LogPipeline(fake_backend),
    )


@pytest.fixture
def client(
    dispatcher: CommandDispatcher,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[TestClient]:
    monkeypatch.delenv("K8S_MCP_KUBECONFIG", raising=False)
    monkeypatch.delenv("K8S_MCP_LOG_DIR", raising=False)
    monkeypatch.setenv("K8S_MCP_TELEMETRY_ENABLED", "0")
    reset_cached_dependencies()

    app = create_app()
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
    package_logger = logging.getLogger("k8s_mcp")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
