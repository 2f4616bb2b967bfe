from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bound_contextvars

from k8s_mcp.api.routes import router
from k8s_mcp.dependencies import get_dispatcher, get_settings, get_telemetry
from k8s_mcp.logging_config import configure_application_logging

LOGGER = logging.getLogger("k8s_mcp.http")
REQUEST_ID_HEADER = "X-Request-ID"


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    # Resolve the cluster connection up front: a bad kubeconfig should stop startup.
    dispatcher_provider = app.dependency_overrides.get(get_dispatcher, get_dispatcher)
    dispatcher_provider()
    LOGGER.info("k8s-mcp ready host=%s port=%s", settings.host, settings.port)
    yield
    LOGGER.info("k8s-mcp shutting down")


async def track_request(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Tag each request with an id, bind it to log context and emit http telemetry."""
    telemetry = get_telemetry()
    request_id = _request_id(request)
    path = request.url.path
    started_at = perf_counter()

    with bound_contextvars(
        http_request_id=request_id,
        http_method=request.method,
        http_path=path,
    ):
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit_elapsed(
                "http.request.error",
                started_at,
                request_id=request_id,
                path=path,
                error_type=type(exc).__name__,
            )
            raise
        response.headers[REQUEST_ID_HEADER] = request_id
        telemetry.emit_elapsed(
            "http.request.finish",
            started_at,
            request_id=request_id,
            path=path,
            status_code=response.status_code,
        )
        return response


def _request_id(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    return incoming or str(uuid4())


def create_app() -> FastAPI:
    app = FastAPI(title="Kubernetes MCP Server", version="0.1.0", lifespan=app_lifespan)
    app.middleware("http")(track_request)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
