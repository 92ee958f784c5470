"""dashapi CLI - operator commands for the API client.

Package structure:
    cli/
    ├── __init__.py           # This file - app assembly and global options
    ├── helpers.py            # Logging state, config loading, client factory
    ├── output.py             # Rich formatting
    └── commands/
        ├── request.py        # request command
        ├── ping.py           # ping command
        └── config_cmd.py     # config show / config path
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from dashapi import __version__

from . import helpers as helpers
from .commands import config_app, ping, request
from .helpers import configure_global_logging, set_config_file, set_log_file, set_log_format, set_log_level
from .output import console

app = typer.Typer(
    name="dashapi",
    help="Resilient client for the dashboard REST API",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"dashapi v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def config_file_callback(value: Path | None) -> Path | None:
    set_config_file(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="DASHAPI_LOG_LEVEL",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="DASHAPI_LOG_FORMAT",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output (required with --log-format both)",
            envvar="DASHAPI_LOG_FILE",
        ),
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            callback=config_file_callback,
            help="YAML config file; API_* environment variables override it",
            envvar="DASHAPI_CONFIG",
        ),
    ] = None,
) -> None:
    """dashapi - resilient client for the dashboard REST API."""
    configure_global_logging(console)


app.command()(request)
app.command()(ping)
app.add_typer(config_app)


__all__ = ["app", "console", "main"]
