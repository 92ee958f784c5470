"""Rich output formatting for the dashapi CLI.

Centralizes the console instance, the status colors, and the
renderers for envelopes, classified errors and configuration tables.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from dashapi.core.envelope import Envelope
from dashapi.core.errors import ClassifiedError, ErrorCode

# Command modules print through this console. JSON modes bypass markup via print_json.
console = Console()


class StatusColors:
    """Color mappings for envelope statuses."""

    ENVELOPE_STATUS: dict[str, str] = {
        "success": "green",
        "error": "red",
    }


def print_json(data: Any, console_instance: Console | None = None) -> None:
    out = console_instance or console
    out.print(json.dumps(data, indent=2, default=str), markup=False, highlight=False, soft_wrap=True)


def render_envelope(
    envelope: Envelope[Any],
    *,
    json_output: bool = False,
    console_instance: Console | None = None,
) -> None:
    """Print an envelope as JSON or as a Rich panel."""
    out = console_instance or console
    if json_output:
        print_json(envelope.to_dict(), out)
        return

    color = StatusColors.ENVELOPE_STATUS.get(envelope.status, "white")
    header = f"[{color}]{envelope.status}[/{color}]  [dim]{envelope.timestamp}[/dim]"
    if envelope.message:
        header += f"\n{envelope.message}"
    out.print(header)
    body = json.dumps(envelope.data, indent=2, default=str)
    out.print(Panel(Syntax(body, "json", word_wrap=True), title="data", expand=False))


def output_error(
    message: str,
    *,
    error_code: str | None = None,
    hints: list[str] | None = None,
    severity: Literal["error", "warning"] = "error",
    json_output: bool = False,
    console_instance: Console | None = None,
    **json_extras: Any,
) -> None:
    """Print an error or warning, as Rich markup or as a JSON object."""
    out = console_instance or console
    if json_output:
        result: dict[str, Any] = {"success": False, "message": message}
        if error_code:
            result["error_code"] = error_code
        if hints:
            result["hints"] = hints
        result.update(json_extras)
        print_json(result, out)
        return

    color = "red" if severity == "error" else "yellow"
    label = "Error" if severity == "error" else "Warning"
    if error_code:
        out.print(f"[{color}]{label} \\[{error_code}]:[/{color}] {message}")
    else:
        out.print(f"[{color}]{label}:[/{color}] {message}")
    if hints:
        out.print()
        out.print("[dim]Hints:[/dim]")
        for hint in hints:
            out.print(f"  - {hint}")


_HINTS: dict[ErrorCode, list[str]] = {
    ErrorCode.AUTH_REQUIRED: ["Log in again or pass a session with --token-file"],
    ErrorCode.NETWORK_ERROR: ["Check API_BASE_URL and that the backend is reachable (dashapi ping)"],
    ErrorCode.TIMEOUT: ["Raise API_TIMEOUT (milliseconds) if the endpoint is slow"],
}


def render_classified_error(
    error: ClassifiedError,
    *,
    json_output: bool = False,
    console_instance: Console | None = None,
) -> None:
    if json_output:
        print_json({"success": False, "error": error.to_dict()}, console_instance)
        return
    message = error.message
    if error.http_status is not None:
        message = f"{message} (HTTP {error.http_status})"
    output_error(
        message,
        error_code=error.code.value,
        hints=_HINTS.get(error.code),
        console_instance=console_instance,
    )
    if error.details:
        out = console_instance or console
        out.print("[dim]Details:[/dim]")
        print_json(error.details, out)


def flatten(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten a nested dict into dot-notation keys."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and value:
            result.update(flatten(value, full_key))
        else:
            result[full_key] = value
    return result


def build_config_table(data: dict[str, Any]) -> Table:
    table = Table(show_header=True, header_style="bold cyan", padding=(0, 1))
    table.add_column("Key", style="white", min_width=30)
    table.add_column("Value", style="green")
    for key, value in flatten(data).items():
        table.add_row(key, str(value))
    return table


__all__ = [
    "StatusColors",
    "build_config_table",
    "console",
    "flatten",
    "output_error",
    "print_json",
    "render_classified_error",
    "render_envelope",
]
