from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from structlog.contextvars import bound_contextvars

from k8s_mcp.dependencies import get_dispatcher
from k8s_mcp.models.command_contracts import (
    Command,
    CommandCatalogEntry,
    CommandKind,
    LogOptions,
    Response,
)
from k8s_mcp.services.command_dispatcher import CommandDispatcher

router = APIRouter(prefix="/api/v1")

Dispatcher = Annotated[CommandDispatcher, Depends(get_dispatcher)]


def _to_http(response: Response) -> JSONResponse:
    return JSONResponse(
        status_code=200 if response.success else 400,
        content=response.to_wire(),
    )


def _dispatch(command: Command, dispatcher: CommandDispatcher) -> JSONResponse:
    with bound_contextvars(
        command_kind=command.kind,
        command_resource=command.resource_type or None,
    ):
        return _to_http(dispatcher.handle(command))


def _log_command(
    kind: CommandKind,
    *,
    namespace: str,
    pod: str,
    container: str,
    since: str,
    tail: int,
    pattern: str,
    level: str,
    format: str,
) -> Command:
    return Command(
        kind=kind,
        namespace=namespace,
        log_options=LogOptions(
            pod=pod,
            container=container,
            since=since,
            tail=tail,
            pattern=pattern,
            log_level=level,
            format=format,
        ),
    )


@router.get(
    "/commands",
    response_model=list[CommandCatalogEntry],
    tags=["commands"],
    operation_id="list_commands",
)
def list_commands(dispatcher: Dispatcher) -> list[CommandCatalogEntry]:
    return dispatcher.list_commands()


@router.post("/mcp", tags=["commands"], operation_id="handle_command")
async def handle_command(request: Request, dispatcher: Dispatcher) -> JSONResponse:
    body = await request.body()
    response = await run_in_threadpool(dispatcher.handle_raw, body)
    return _to_http(response)


@router.get("/resources/{resource}", tags=["resources"], operation_id="list_resources")
def list_resources(resource: str, dispatcher: Dispatcher, namespace: str = "") -> JSONResponse:
    command = Command(kind="list", resource_type=resource, namespace=namespace)
    return _dispatch(command, dispatcher)


@router.get("/resources/{resource}/{name}", tags=["resources"], operation_id="get_resource")
def get_resource(
    resource: str,
    name: str,
    dispatcher: Dispatcher,
    namespace: str = "",
) -> JSONResponse:
    command = Command(kind="get", resource_type=resource, name=name, namespace=namespace)
    return _dispatch(command, dispatcher)


@router.post("/resources/{resource}", tags=["resources"], operation_id="create_resource")
async def create_resource(
    resource: str,
    request: Request,
    dispatcher: Dispatcher,
    namespace: str = "",
) -> JSONResponse:
    body = await request.body()
    command = Command(
        kind="create",
        resource_type=resource,
        namespace=namespace,
        payload=body or None,
    )
    return await run_in_threadpool(_dispatch, command, dispatcher)


@router.delete("/resources/{resource}/{name}", tags=["resources"], operation_id="delete_resource")
def delete_resource(
    resource: str,
    name: str,
    dispatcher: Dispatcher,
    namespace: str = "",
) -> JSONResponse:
    command = Command(kind="delete", resource_type=resource, name=name, namespace=namespace)
    return _dispatch(command, dispatcher)


@router.get("/logs/search", tags=["logs"], operation_id="search_logs")
def search_logs(
    dispatcher: Dispatcher,
    namespace: str = "",
    pod: str = "",
    container: str = "",
    since: str = "",
    tail: Annotated[int, Query(ge=0)] = 0,
    pattern: str = "",
    level: str = "",
) -> JSONResponse:
    command = _log_command(
        "search_logs",
        namespace=namespace,
        pod=pod,
        container=container,
        since=since,
        tail=tail,
        pattern=pattern,
        level=level,
        format="",
    )
    return _dispatch(command, dispatcher)


@router.get("/logs/export", tags=["logs"], operation_id="export_logs")
def export_logs(
    dispatcher: Dispatcher,
    namespace: str = "",
    pod: str = "",
    container: str = "",
    since: str = "",
    tail: Annotated[int, Query(ge=0)] = 0,
    pattern: str = "",
    level: str = "",
    format: str = "",
) -> JSONResponse:
    command = _log_command(
        "export_logs",
        namespace=namespace,
        pod=pod,
        container=container,
        since=since,
        tail=tail,
        pattern=pattern,
        level=level,
        format=format,
    )
    return _dispatch(command, dispatcher)


@router.get("/logs/{namespace}/{pod}", tags=["logs"], operation_id="get_logs")
def get_logs(
    namespace: str,
    pod: str,
    dispatcher: Dispatcher,
    container: str = "",
    since: str = "",
    tail: Annotated[int, Query(ge=0)] = 0,
    pattern: str = "",
    level: str = "",
) -> JSONResponse:
    command = _log_command(
        "logs",
        namespace=namespace,
        pod=pod,
        container=container,
        since=since,
        tail=tail,
        pattern=pattern,
        level=level,
        format="",
    )
    return _dispatch(command, dispatcher)
