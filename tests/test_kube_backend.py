from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any, cast

import pytest
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import ProtocolError

from k8s_mcp.models.log_contracts import LogQuery
from k8s_mcp.services.errors import (
    BackendUnavailableError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    StreamError,
)
from k8s_mcp.services.kube_backend import (
    KubernetesBackend,
    resolve_since_seconds,
    resource_path,
    translate_api_exception,
)
from k8s_mcp.services.resource_kinds import ResourceCoordinates, ResourceKindRegistry

PODS = ResourceCoordinates("", "v1", "pods")
DEPLOYMENTS = ResourceCoordinates("apps", "v1", "deployments")


def _api_exception(status: int, message: str | None = None) -> ApiException:
    exc = ApiException(status=status, reason="Failure")
    if message is not None:
        exc.body = json.dumps({"kind": "Status", "message": message})
    return exc


class _FakeApiClient:
    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def call_api(self, resource_path: str, method: str, **kwargs: Any) -> Any:
        self.calls.append({"path": resource_path, "method": method, **kwargs})
        if self.error is not None:
            raise self.error
        return self.result


class _FakeLogResponse:
    def __init__(self, chunks: list[bytes], error_after: int | None = None) -> None:
        self._chunks = chunks
        self._error_after = error_after
        self.closed = False
        self.released = False

    def __iter__(self) -> Iterator[bytes]:
        for index, chunk in enumerate(self._chunks):
            if self._error_after is not None and index == self._error_after:
                raise ProtocolError("Connection broken")
            yield chunk

    def close(self) -> None:
        self.closed = True

    def release_conn(self) -> None:
        self.released = True


class _FakeCoreV1:
    def __init__(
        self,
        response: _FakeLogResponse | None = None,
        error: Exception | None = None,
    ) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def read_namespaced_pod_log(self, name: str, namespace: str, **kwargs: Any) -> Any:
        self.calls.append({"name": name, "namespace": namespace, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response


def _backend(api_client: _FakeApiClient | None = None) -> KubernetesBackend:
    return KubernetesBackend(cast(Any, api_client or _FakeApiClient()), request_timeout_seconds=5.0)


def _with_core(core: _FakeCoreV1) -> KubernetesBackend:
    backend = _backend()
    backend._core_v1 = cast(Any, core)  # pyright: ignore[reportPrivateUsage]
    return backend


def test_resource_path_for_core_and_grouped_kinds() -> None:
    assert resource_path(PODS, "default") == "/api/v1/namespaces/default/pods"
    assert resource_path(PODS, "default", "web-1") == "/api/v1/namespaces/default/pods/web-1"
    assert resource_path(DEPLOYMENTS, "") == "/apis/apps/v1/deployments"
    assert (
        resource_path(ResourceKindRegistry().resolve("ingresses"), "prod", "edge")
        == "/apis/networking.k8s.io/v1/namespaces/prod/ingresses/edge"
    )


def test_resource_path_quotes_segments() -> None:
    assert resource_path(PODS, "a/b", "c d") == "/api/v1/namespaces/a%2Fb/pods/c%20d"


@pytest.mark.parametrize(
    ("status", "error_type"),
    [
        (404, NotFoundError),
        (409, ConflictError),
        (400, InvalidArgumentError),
        (422, InvalidArgumentError),
        (403, BackendUnavailableError),
        (500, BackendUnavailableError),
    ],
)
def test_translate_api_exception(status: int, error_type: type[Exception]) -> None:
    translated = translate_api_exception(_api_exception(status, "pods \"web-1\" problem"))

    assert type(translated) is error_type
    assert 'pods "web-1" problem' in str(translated)


def test_translate_api_exception_without_body_uses_reason() -> None:
    assert str(translate_api_exception(_api_exception(404))) == "Failure"


def test_get_calls_generic_api_with_json_result() -> None:
    api_client = _FakeApiClient(result={"kind": "Pod", "metadata": {"name": "web-1"}})

    document = _backend(api_client).get(PODS, "default", "web-1")

    assert document["metadata"]["name"] == "web-1"
    (call,) = api_client.calls
    assert call["path"] == "/api/v1/namespaces/default/pods/web-1"
    assert call["method"] == "GET"
    assert call["response_type"] == "object"
    assert call["_request_timeout"] == 5.0


def test_create_posts_document() -> None:
    api_client = _FakeApiClient(result={"kind": "Deployment"})
    document = {"metadata": {"name": "web"}}

    _backend(api_client).create(DEPLOYMENTS, "default", document)

    (call,) = api_client.calls
    assert call["method"] == "POST"
    assert call["path"] == "/apis/apps/v1/namespaces/default/deployments"
    assert call["body"] == document


def test_api_errors_are_translated() -> None:
    api_client = _FakeApiClient(error=_api_exception(409, "already exists"))

    with pytest.raises(ConflictError, match="already exists"):
        _backend(api_client).create(PODS, "default", {"metadata": {"name": "web-1"}})


def test_transport_errors_mean_backend_unavailable() -> None:
    api_client = _FakeApiClient(error=ProtocolError("connection refused"))

    with pytest.raises(BackendUnavailableError, match="unreachable"):
        _backend(api_client).delete(PODS, "default", "web-1")


def test_resolve_since_seconds_rounds_up_absolute_time() -> None:
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
    query = LogQuery(
        namespace="default",
        pod="web-1",
        since_time=datetime(2024, 1, 1, 11, 59, 29, 500000, tzinfo=UTC),
        since_seconds=5,
    )

    assert resolve_since_seconds(query, now=now) == 31


def test_resolve_since_seconds_never_below_one() -> None:
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
    query = LogQuery(namespace="default", pod="web-1", since_time=now)

    assert resolve_since_seconds(query, now=now) == 1


def test_resolve_since_seconds_falls_back_to_relative_value() -> None:
    query = LogQuery(namespace="default", pod="web-1", since_seconds=120)

    assert resolve_since_seconds(query) == 120
    assert resolve_since_seconds(LogQuery(namespace="default", pod="web-1")) is None


def test_open_log_stream_reads_lines_and_releases_response() -> None:
    response = _FakeLogResponse([b"first line\n", b"second line\n", b"no newline"])
    core = _FakeCoreV1(response=response)
    backend = _with_core(core)

    with backend.open_log_stream(LogQuery(namespace="default", pod="web-1", tail=50)) as lines:
        assert list(lines) == ["first line\n", "second line\n", "no newline"]

    assert response.closed is True
    assert response.released is True
    (call,) = core.calls
    assert call["name"] == "web-1"
    assert call["container"] is None
    assert call["tail_lines"] == 50
    assert call["follow"] is False
    assert call["_preload_content"] is False


def test_open_log_stream_missing_pod_is_not_found() -> None:
    core = _FakeCoreV1(error=_api_exception(404, 'pods "ghost" not found'))

    with pytest.raises(NotFoundError, match="ghost"):
        with _with_core(core).open_log_stream(LogQuery(namespace="default", pod="ghost")):
            pass


def test_open_log_stream_other_api_failure_is_stream_error() -> None:
    core = _FakeCoreV1(error=_api_exception(500, "etcd timeout"))

    with pytest.raises(StreamError, match="error opening log stream: etcd timeout"):
        with _with_core(core).open_log_stream(LogQuery(namespace="default", pod="web-1")):
            pass


def test_read_failure_mid_stream_is_stream_error_and_releases() -> None:
    response = _FakeLogResponse([b"one\n", b"two\n", b"three\n"], error_after=1)
    backend = _with_core(_FakeCoreV1(response=response))

    with pytest.raises(StreamError, match="error reading logs"):
        with backend.open_log_stream(LogQuery(namespace="default", pod="web-1")) as lines:
            list(lines)

    assert response.closed is True
    assert response.released is True
