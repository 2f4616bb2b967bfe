from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from k8s_mcp.services.errors import CommandError, InvalidArgumentError
from k8s_mcp.services.resource_kinds import ResourceCoordinates, ResourceKindRegistry

LOGGER = logging.getLogger("k8s_mcp.resources")

Document = dict[str, Any]


class ResourceBackend(Protocol):
    def list(self, coordinates: ResourceCoordinates, namespace: str) -> Document:
        ...

    def get(self, coordinates: ResourceCoordinates, namespace: str, name: str) -> Document:
        ...

    def create(
        self,
        coordinates: ResourceCoordinates,
        namespace: str,
        document: Document,
    ) -> Document:
        ...

    def delete(self, coordinates: ResourceCoordinates, namespace: str, name: str) -> None:
        ...


class ResourceStore:
    def __init__(self, backend: ResourceBackend, registry: ResourceKindRegistry) -> None:
        self._backend = backend
        self._registry = registry

    def list(self, kind: str, namespace: str = "") -> Document:
        coordinates = self._registry.resolve(kind)
        try:
            return self._backend.list(coordinates, namespace)
        except CommandError as exc:
            raise _with_context(exc, f"failed to list {kind}{_scope(namespace)}") from exc

    def get(self, kind: str, namespace: str, name: str) -> Document:
        coordinates = self._registry.resolve(kind)
        try:
            return self._backend.get(coordinates, namespace, name)
        except CommandError as exc:
            raise _with_context(exc, f"failed to get {kind} '{name}'{_scope(namespace)}") from exc

    def create(self, kind: str, namespace: str, payload: Any) -> Document:
        coordinates = self._registry.resolve(kind)
        document = parse_resource_payload(payload)
        try:
            created = self._backend.create(coordinates, namespace, document)
        except CommandError as exc:
            raise _with_context(exc, f"failed to create {kind}{_scope(namespace)}") from exc
        LOGGER.info(
            "resource created kind=%s namespace=%s name=%s",
            kind,
            namespace or "-",
            _document_name(created),
        )
        return created

    def delete(self, kind: str, namespace: str, name: str) -> None:
        coordinates = self._registry.resolve(kind)
        try:
            self._backend.delete(coordinates, namespace, name)
        except CommandError as exc:
            raise _with_context(
                exc, f"failed to delete {kind} '{name}'{_scope(namespace)}"
            ) from exc
        LOGGER.info("resource deleted kind=%s namespace=%s name=%s", kind, namespace or "-", name)


def parse_resource_payload(payload: Any) -> Document:
    """Accept a decoded JSON object, or JSON text/bytes that decode to one."""
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, bytes | bytearray):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidArgumentError("invalid resource data: payload is not UTF-8") from exc
    if isinstance(payload, str):
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise InvalidArgumentError(f"invalid resource data: {exc}") from exc
        if isinstance(decoded, dict):
            return decoded
    raise InvalidArgumentError("invalid resource data: expected a JSON object")


def _with_context(exc: CommandError, context: str) -> CommandError:
    return type(exc)(f"{context}: {exc}")


def _scope(namespace: str) -> str:
    if not namespace:
        return ""
    return f" in namespace '{namespace}'"


def _document_name(document: Document) -> str:
    metadata = document.get("metadata")
    if isinstance(metadata, dict):
        name = metadata.get("name")
        if isinstance(name, str):
            return name
    return "-"
