from __future__ import annotations

import json
from typing import Any

import typer
from dotenv import load_dotenv

from smart_document import errors
from smart_document.config import Settings, load_config
from smart_document.container import build_container, shutdown_container
from smart_document.errors import ErrorCode
from smart_document.gateway import SERVICE_NAME, run

app = typer.Typer(
    name="smart-document",
    help="Smart document service tooling",
)

SECRET_KEYS = (
    ("jwt", "secret"),
    ("database", "password"),
    ("redis", "password"),
    ("storage", "minio", "secret_access_key"),
)

ConfigDirOption = typer.Option("./etc", "--config-dir", help="Directory with YAML files")
ServiceOption = typer.Option(SERVICE_NAME, "--service", help="Service config name")


def masked(settings: Settings) -> dict[str, Any]:
    """Return *settings* as a dict with credentials replaced."""
    data = settings.model_dump(mode="json")
    for path in SECRET_KEYS:
        node = data
        for part in path[:-1]:
            node = node[part]
        if node.get(path[-1]):
            node[path[-1]] = "***"
    return data


def _fail(err: errors.AppError) -> typer.Exit:
    typer.echo(f"Failed to load config: {err}", err=True)
    return typer.Exit(1)


@app.command("gateway", help="Start the gateway service demo")
def gateway(
    config_dir: str = ConfigDirOption,
    service: str = ServiceOption,
) -> None:
    try:
        container = build_container(config_dir, service)
    except errors.AppError as err:
        raise _fail(err) from err
    try:
        code = run(container.settings())
    finally:
        shutdown_container(container)
    raise typer.Exit(code)


@app.command("config", help="Print the effective configuration as JSON")
def config_cmd(
    config_dir: str = ConfigDirOption,
    service: str = ServiceOption,
) -> None:
    try:
        settings = load_config(config_dir, service)
    except errors.AppError as err:
        raise _fail(err) from err
    typer.echo(json.dumps(masked(settings), indent=2))


@app.command("codes", help="List error codes with their band and HTTP status")
def codes() -> None:
    for code in ErrorCode:
        status = errors.http_status_for(code)
        typer.echo(f"{int(code)}\t{code.band.name.lower()}\t{int(status)}\t{code.name}")


@app.callback()
def root() -> None:
    """Root command for smart-document."""
    load_dotenv()


def main() -> None:  # pragma: no cover - CLI entry point
    """Entrypoint for the CLI."""
    app()


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
