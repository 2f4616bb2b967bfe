from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from k8s_mcp.services.errors import UnsupportedKindError

LOGGER = logging.getLogger("k8s_mcp.resource_kinds")


@dataclass(frozen=True)
class ResourceCoordinates:
    group: str
    version: str
    resource: str

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"


BUILTIN_RESOURCE_KINDS: Mapping[str, ResourceCoordinates] = MappingProxyType(
    {
        "pods": ResourceCoordinates("", "v1", "pods"),
        "services": ResourceCoordinates("", "v1", "services"),
        "deployments": ResourceCoordinates("apps", "v1", "deployments"),
        "namespaces": ResourceCoordinates("", "v1", "namespaces"),
        "configmaps": ResourceCoordinates("", "v1", "configmaps"),
        "secrets": ResourceCoordinates("", "v1", "secrets"),
        "persistentvolumes": ResourceCoordinates("", "v1", "persistentvolumes"),
        "persistentvolumeclaims": ResourceCoordinates("", "v1", "persistentvolumeclaims"),
        "statefulsets": ResourceCoordinates("apps", "v1", "statefulsets"),
        "daemonsets": ResourceCoordinates("apps", "v1", "daemonsets"),
        "ingresses": ResourceCoordinates("networking.k8s.io", "v1", "ingresses"),
    }
)


class ResourceKindRegistry:
    """Read-only lookup from a resource kind string to its API coordinates.

    The table is copied into a mapping proxy on construction and never changes
    afterwards, so one registry can be shared by every request thread.
    """

    def __init__(self, table: Mapping[str, ResourceCoordinates] | None = None) -> None:
        source = BUILTIN_RESOURCE_KINDS if table is None else table
        self._table: Mapping[str, ResourceCoordinates] = MappingProxyType(dict(source))

    def resolve(self, kind: str) -> ResourceCoordinates:
        coordinates = self._table.get(kind)
        if coordinates is None:
            raise UnsupportedKindError(f"unsupported resource type: {kind}")
        return coordinates

    def kinds(self) -> list[str]:
        return sorted(self._table)

    def items(self) -> list[tuple[str, ResourceCoordinates]]:
        return [(kind, self._table[kind]) for kind in self.kinds()]

    def __contains__(self, kind: object) -> bool:
        return kind in self._table

    def __len__(self) -> int:
        return len(self._table)


def load_resource_kinds(path: Path | None) -> ResourceKindRegistry:
    """Build the registry from the built-in table plus an optional YAML file.

    The file maps kind names to ``{group, version, resource}``; ``group``
    defaults to the core group and ``resource`` to the kind name::

        certificates:
          group: cert-manager.io
          version: v1
    """
    if path is None:
        return ResourceKindRegistry()

    with path.open(encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Resource kinds file must contain a mapping: {path}")

    table = dict(BUILTIN_RESOURCE_KINDS)
    for kind, fields in raw.items():
        table[str(kind)] = _coordinates_from_mapping(str(kind), fields, path=path)

    LOGGER.info(
        "resource kinds loaded path=%s extra=%s total=%s",
        path,
        len(raw),
        len(table),
    )
    return ResourceKindRegistry(table)


def _coordinates_from_mapping(kind: str, fields: Any, *, path: Path) -> ResourceCoordinates:
    if not isinstance(fields, dict):
        raise ValueError(f"Resource kind '{kind}' in {path} must be a mapping.")
    version = fields.get("version")
    if not isinstance(version, str) or not version.strip():
        raise ValueError(f"Resource kind '{kind}' in {path} is missing a version.")
    group = fields.get("group") or ""
    resource = fields.get("resource") or kind
    return ResourceCoordinates(
        group=str(group).strip(),
        version=version.strip(),
        resource=str(resource).strip(),
    )
