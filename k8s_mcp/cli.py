"""Command line entry point for the Kubernetes MCP server."""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any

import click
import uvicorn
import yaml
from rich.console import Console
from rich.table import Table

from k8s_mcp.config import load_settings
from k8s_mcp.dependencies import (
    get_dispatcher,
    get_registry,
    reset_cached_dependencies,
)
from k8s_mcp.services.errors import BackendUnavailableError

console = Console()


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """Kubernetes MCP Server: cluster resources and pod logs behind one command protocol."""


@main.command()
@click.option("--host", default=None, help="Interface to bind (default from K8S_MCP_HOST).")
@click.option("-p", "--port", type=int, default=None, help="Port to listen on.")
@click.option(
    "-k",
    "--kubeconfig",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to kubeconfig (in-cluster config when omitted).",
)
def serve(host: str | None, port: int | None, kubeconfig: Path | None) -> None:
    """Start the HTTP server."""
    overrides = _settings_overrides(host=host, port=port, kubeconfig=kubeconfig)
    settings = load_settings(**overrides)
    _pin_settings(overrides)

    console.print(f"Starting Kubernetes MCP Server on [cyan]{settings.host}:{settings.port}[/cyan]")
    uvicorn.run(
        "k8s_mcp.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


@main.command()
def kinds() -> None:
    """Show the resource kinds commands can target."""
    registry = get_registry()

    table = Table(title="Resource kinds")
    table.add_column("Kind", style="cyan")
    table.add_column("API version")
    table.add_column("Resource")
    for kind, coordinates in registry.items():
        table.add_row(kind, coordinates.api_version, coordinates.resource)
    console.print(table)


@main.command(name="exec")
@click.argument("envelope_file", type=click.File("r", encoding="utf-8"))
@click.option(
    "-k",
    "--kubeconfig",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to kubeconfig (in-cluster config when omitted).",
)
def exec_command(envelope_file: Any, kubeconfig: Path | None) -> None:
    """Run one command envelope (JSON or YAML file, '-' for stdin) and print the response."""
    try:
        envelope = yaml.safe_load(envelope_file)
    except yaml.YAMLError as exc:
        raise click.BadParameter(f"not valid JSON or YAML: {exc}", param_hint="ENVELOPE_FILE")
    if not isinstance(envelope, dict):
        raise click.BadParameter("envelope must be a mapping", param_hint="ENVELOPE_FILE")

    _pin_settings(_settings_overrides(kubeconfig=kubeconfig))
    try:
        dispatcher = get_dispatcher()
    except BackendUnavailableError as exc:
        raise click.ClickException(str(exc)) from exc

    response = dispatcher.handle_raw(json.dumps(envelope, default=str))
    console.print_json(json.dumps(response.to_wire()))
    if not response.success:
        sys.exit(1)


def _settings_overrides(**values: Any) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _pin_settings(overrides: dict[str, Any]) -> None:
    # Flags win over the environment; uvicorn imports the app in this process.
    for key, value in overrides.items():
        os.environ[f"K8S_MCP_{key.upper()}"] = str(value)
    reset_cached_dependencies()


if __name__ == "__main__":
    main()
