"""Shared utilities for dashapi CLI commands.

Holds the module-level CLI state set by the global options (logging and the
config file path), plus the factories commands use to load configuration and
build an ApiClient. Tests monkeypatch ``build_client`` to inject a mock
transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import typer
from pydantic import ValidationError
from rich.console import Console

from dashapi.client.api_client import ApiClient
from dashapi.core.config import DashApiConfig, LoggingConfig, load_config
from dashapi.core.errors import ConfigurationError
from dashapi.core.logging import configure_logging, get_logger

_logger = get_logger("cli")


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """CLI logging options. None means the option was not given."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    format: Literal["json", "console", "both"] | None = None
    file: Path | None = None
    configured: bool = False

    def overrides(self) -> dict[str, Any]:
        given = {"level": self.level, "format": self.format, "file_path": self.file}
        return {key: value for key, value in given.items() if value is not None}


# Applied below any config file or command-line setting.
CLI_LOGGING_DEFAULTS: dict[str, Any] = {"level": "WARNING", "format": "console"}

_log_config = CliLoggingConfig()
_config_file: Path | None = None
_loaded_config: DashApiConfig | None = None


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_LOG_FORMATS = ("json", "console", "both")


def set_log_level(level: str) -> None:
    if level.upper() not in _LOG_LEVELS:
        raise typer.BadParameter(f"must be one of {', '.join(_LOG_LEVELS)}")
    _log_config.level = level.upper()  # type: ignore[assignment]


def set_log_format(fmt: str) -> None:
    if fmt.lower() not in _LOG_FORMATS:
        raise typer.BadParameter(f"must be one of {', '.join(_LOG_FORMATS)}")
    _log_config.format = fmt.lower()  # type: ignore[assignment]


def set_log_file(path: Path | None) -> None:
    _log_config.file = path


def resolve_logging(file_logging: LoggingConfig | None = None) -> LoggingConfig:
    """Merge CLI defaults, the config file's ``logging`` section and CLI options.

    Only fields the config file actually sets are taken from it; CLI options
    win over both.

    Raises:
        ValidationError: If the merged settings are inconsistent.
    """
    settings = dict(CLI_LOGGING_DEFAULTS)
    if file_logging is not None:
        settings.update(file_logging.model_dump(exclude_unset=True))
    settings.update(_log_config.overrides())
    return LoggingConfig.model_validate(settings)


def _apply_logging(settings: LoggingConfig) -> None:
    configure_logging(
        level=settings.level,
        format=settings.format,
        file_path=settings.file_path,
        max_file_size_mb=settings.max_file_size_mb,
        backup_count=settings.backup_count,
    )


def configure_global_logging(console: Console) -> None:
    """Configure logging once per session.

    When a config file is given, console logging at the CLI level is set up
    while the file is read, then its ``logging`` section is merged in.

    Raises:
        typer.Exit: Code 1 if the logging settings are inconsistent (e.g.
            format "both" without a log file), code 2 if the config file is
            invalid.
    """
    if _log_config.configured:
        return
    try:
        file_logging: LoggingConfig | None = None
        if _config_file is not None:
            configure_logging(level=_log_config.level or CLI_LOGGING_DEFAULTS["level"])
            config = load_cli_config(console)
            if "logging" in config.model_fields_set:
                file_logging = config.logging
        settings = resolve_logging(file_logging)
        _apply_logging(settings)
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None
    _log_config.configured = True
    _logger.debug("cli.logging_configured", level=settings.level, format=settings.format)


def reset_cli_state() -> None:
    """Reset module-level CLI state (used by tests)."""
    global _config_file, _loaded_config
    _log_config.level = None
    _log_config.format = None
    _log_config.file = None
    _log_config.configured = False
    _config_file = None
    _loaded_config = None


# =============================================================================
# Configuration and client factories
# =============================================================================


def set_config_file(path: Path | None) -> None:
    global _config_file, _loaded_config
    _config_file = path
    _loaded_config = None


def get_config_file() -> Path | None:
    return _config_file


def load_cli_config(console: Console, token_file: Path | None = None) -> DashApiConfig:
    """Load configuration for a command, exiting with code 2 when invalid.

    The file is read once per session; later calls reuse the result.
    """
    global _loaded_config
    if _loaded_config is None:
        try:
            _loaded_config = load_config(_config_file)
        except ConfigurationError as e:
            console.print(f"[red]Configuration error:[/red] {e}")
            raise typer.Exit(2) from None
    config = _loaded_config
    if token_file is not None:
        client = config.client.model_copy(update={"token_file": token_file})
        config = config.model_copy(update={"client": client})
    return config


def build_client(config: DashApiConfig) -> ApiClient:
    return ApiClient.from_config(config)


__all__ = [
    "CLI_LOGGING_DEFAULTS",
    "CliLoggingConfig",
    "build_client",
    "configure_global_logging",
    "get_config_file",
    "load_cli_config",
    "reset_cli_state",
    "resolve_logging",
    "set_config_file",
    "set_log_file",
    "set_log_format",
    "set_log_level",
]
