"""Typer-powered command line for ``gf-provisioning-reloader``.

``run`` is the long-running sidecar entry point; the remaining commands are
small inspection helpers for operators debugging a deployment.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from . import get_version
from .classifier import ChangeClassifier, resolve_categories
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .identity import BootstrapFailedError, CorruptStateError, IdentityStore, PersistenceError
from .logging import configure_logging
from .service import ReloaderService
from .watcher import WatcherError

LOGGER = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    add_completion=False,
    help="Reload Grafana provisioning whenever its files change.",
)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to the reloader's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of a table.",
)


def _load(ctx: typer.Context) -> AppConfig:
    config = ctx.obj
    if isinstance(config, AppConfig):
        return config
    return _ensure_config(ctx, None)


def _ensure_config(ctx: typer.Context, config_file: Path | None) -> AppConfig:
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    ctx.obj = config
    return config


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the reloader version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"gf-provisioning-reloader {get_version()}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_config(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


@app.command()
def run(
    ctx: typer.Context,
    debounce_window: float | None = typer.Option(
        None,
        "--debounce-window",
        min=0.001,
        help="Override the quiescence window in seconds.",
    ),
    initial_reload: bool | None = typer.Option(
        None,
        "--initial-reload/--no-initial-reload",
        help="Reload categories with existing files once at startup.",
    ),
) -> None:
    """Bootstrap the Grafana identity, then watch and reload provisioning."""
    config = _load(ctx)
    overrides: dict[str, Any] = {}
    if debounce_window is not None:
        overrides["debounce_window"] = debounce_window
    if initial_reload is not None:
        overrides["initial_reload"] = initial_reload
    if overrides:
        config = replace(config, **overrides)

    configure_logging(config.log_level)
    service = ReloaderService(config)
    try:
        asyncio.run(service.run())
    except (CorruptStateError, PersistenceError, WatcherError) as exc:
        LOGGER.error("%s", exc)
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc
    except BootstrapFailedError as exc:
        LOGGER.error("%s", exc)
        raise typer.Exit(code=ExitCode.FAILURE) from exc
    except KeyboardInterrupt:
        LOGGER.info("Received signal: SIGINT, exiting...")


@app.command()
def identity(ctx: typer.Context, as_json: bool = JSON_OPTION) -> None:
    """Show the persisted service-account identity (password redacted)."""
    config = _load(ctx)
    store = IdentityStore(config.service_account_file)
    try:
        summary = store.describe()
    except CorruptStateError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc

    summary["node_id"] = config.node_id
    if as_json:
        typer.echo(json.dumps(summary, indent=2))
        return

    if not summary["present"]:
        console.print(
            f"[yellow]No identity persisted yet[/yellow] at {summary['path']} "
            f"(node id {config.node_id})."
        )
        return

    table = Table(title="Service account", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key in ("path", "node_id", "id", "login", "email", "password"):
        table.add_row(key, str(summary[key]))
    console.print(table)


@app.command()
def classify(
    ctx: typer.Context,
    paths: list[str] = typer.Argument(..., help="Paths to classify."),
    as_json: bool = JSON_OPTION,
) -> None:
    """Print the reload categories each path would trigger."""
    config = _load(ctx)
    classifier = ChangeClassifier(resolve_categories(config.categories))
    results = {
        path: sorted(category.name for category in classifier.classify(path)) for path in paths
    }

    if as_json:
        typer.echo(json.dumps(results, indent=2))
        return

    table = Table(title="Classification")
    table.add_column("Path")
    table.add_column("Categories")
    for path, names in results.items():
        table.add_row(path, ", ".join(names) if names else "-")
    console.print(table)


def main() -> None:  # pragma: no cover - console script shim
    app()


__all__ = ["app", "main"]
