"""Kubernetes API bindings for the resource store and the log pipeline."""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError as TransportError

from k8s_mcp.models.log_contracts import LogQuery
from k8s_mcp.services.errors import (
    BackendUnavailableError,
    CommandError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    StreamError,
)
from k8s_mcp.services.resource_kinds import ResourceCoordinates

LOGGER = logging.getLogger("k8s_mcp.kubernetes")

_JSON_HEADERS: dict[str, str] = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


def build_api_client(kubeconfig: Path | None) -> client.ApiClient:
    """Load cluster credentials: explicit kubeconfig, else in-cluster, else default kubeconfig."""
    configuration = client.Configuration()
    try:
        if kubeconfig is not None:
            config.load_kube_config(
                config_file=str(kubeconfig),
                client_configuration=configuration,
            )
            source = str(kubeconfig)
        else:
            try:
                config.load_incluster_config(client_configuration=configuration)
                source = "in-cluster"
            except ConfigException:
                config.load_kube_config(client_configuration=configuration)
                source = "default-kubeconfig"
    except (ConfigException, OSError) as exc:
        raise BackendUnavailableError(f"failed to build kubeconfig: {exc}") from exc

    LOGGER.info("kubernetes client configured source=%s host=%s", source, configuration.host)
    return client.ApiClient(configuration)


def resource_path(
    coordinates: ResourceCoordinates,
    namespace: str,
    name: str | None = None,
) -> str:
    if coordinates.group:
        path = f"/apis/{coordinates.group}/{coordinates.version}"
    else:
        path = f"/api/{coordinates.version}"
    if namespace:
        path = f"{path}/namespaces/{quote(namespace, safe='')}"
    path = f"{path}/{coordinates.resource}"
    if name:
        path = f"{path}/{quote(name, safe='')}"
    return path


def resolve_since_seconds(query: LogQuery, *, now: datetime | None = None) -> int | None:
    # The read-log API only takes sinceSeconds, so an absolute time is converted here.
    if query.since_time is not None:
        reference = now if now is not None else datetime.now(UTC)
        elapsed = (reference - query.since_time).total_seconds()
        return max(1, math.ceil(elapsed))
    return query.since_seconds


class KubernetesBackend:
    def __init__(
        self,
        api_client: client.ApiClient,
        *,
        request_timeout_seconds: float = 30.0,
    ) -> None:
        self._api_client = api_client
        self._core_v1 = client.CoreV1Api(api_client)
        self._request_timeout_seconds = request_timeout_seconds

    @classmethod
    def from_kubeconfig(
        cls,
        kubeconfig: Path | None,
        *,
        request_timeout_seconds: float = 30.0,
    ) -> KubernetesBackend:
        return cls(
            build_api_client(kubeconfig),
            request_timeout_seconds=request_timeout_seconds,
        )

    def list(self, coordinates: ResourceCoordinates, namespace: str) -> dict[str, Any]:
        return self._call("GET", resource_path(coordinates, namespace))

    def get(self, coordinates: ResourceCoordinates, namespace: str, name: str) -> dict[str, Any]:
        return self._call("GET", resource_path(coordinates, namespace, name))

    def create(
        self,
        coordinates: ResourceCoordinates,
        namespace: str,
        document: dict[str, Any],
    ) -> dict[str, Any]:
        return self._call("POST", resource_path(coordinates, namespace), body=document)

    def delete(self, coordinates: ResourceCoordinates, namespace: str, name: str) -> None:
        self._call("DELETE", resource_path(coordinates, namespace, name))

    @contextmanager
    def open_log_stream(self, query: LogQuery) -> Iterator[Iterator[str]]:
        try:
            response = self._core_v1.read_namespaced_pod_log(
                query.pod,
                query.namespace,
                container=query.container or None,
                since_seconds=resolve_since_seconds(query),
                tail_lines=query.tail or None,
                follow=False,
                _preload_content=False,
                _request_timeout=self._request_timeout_seconds,
            )
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(
                    f"error opening log stream: pod '{query.pod}' or container "
                    f"'{query.container}' not found: {_api_error_detail(exc)}"
                ) from exc
            raise StreamError(f"error opening log stream: {_api_error_detail(exc)}") from exc
        except TransportError as exc:
            raise StreamError(f"error opening log stream: {exc}") from exc

        LOGGER.debug(
            "log stream opened namespace=%s pod=%s container=%s tail=%s",
            query.namespace,
            query.pod,
            query.container or "-",
            query.tail,
        )
        try:
            yield _iter_lines(response)
        finally:
            response.close()
            response.release_conn()

    def _call(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
    ) -> Any:
        try:
            return self._api_client.call_api(
                path,
                method,
                header_params=dict(_JSON_HEADERS),
                body=body,
                response_type="object",
                auth_settings=["BearerToken"],
                _return_http_data_only=True,
                _preload_content=True,
                _request_timeout=self._request_timeout_seconds,
            )
        except ApiException as exc:
            raise translate_api_exception(exc) from exc
        except TransportError as exc:
            raise BackendUnavailableError(f"kubernetes API unreachable: {exc}") from exc


def translate_api_exception(exc: ApiException) -> CommandError:
    detail = _api_error_detail(exc)
    if exc.status == 404:
        return NotFoundError(detail)
    if exc.status == 409:
        return ConflictError(detail)
    if exc.status in {400, 422}:
        return InvalidArgumentError(detail)
    return BackendUnavailableError(f"kubernetes API returned {exc.status}: {detail}")


def _api_error_detail(exc: ApiException) -> str:
    body = exc.body
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str) and body:
        try:
            status = json.loads(body)
        except json.JSONDecodeError:
            return body.strip()
        if isinstance(status, dict) and isinstance(status.get("message"), str):
            return status["message"]
    return str(exc.reason or exc.status)


def _iter_lines(response: Any) -> Iterator[str]:
    try:
        for raw_line in response:
            yield raw_line.decode("utf-8", errors="replace")
    except TransportError as exc:
        raise StreamError(f"error reading logs: {exc}") from exc
