"""Configuration commands for the dashapi CLI.

Subcommands:
- ``dashapi config show``  Display the effective configuration
- ``dashapi config path``  Show which config file is in use
"""

from __future__ import annotations

import typer

from .. import helpers
from ..output import build_config_table, console, print_json

config_app = typer.Typer(
    name="config",
    help="Inspect client configuration.",
    invoke_without_command=True,
)


@config_app.callback(invoke_without_command=True)
def config_callback(ctx: typer.Context) -> None:
    """Inspect client configuration."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


@config_app.command()
def show(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Display the effective configuration (file plus API_* environment overrides).

    Examples:
        dashapi config show
        dashapi --config ~/.dashapi.yaml config show --json
    """
    config = helpers.load_cli_config(console)
    data = config.model_dump(mode="json")
    if json_output:
        print_json(data)
        return

    path = helpers.get_config_file()
    source = f"[dim]{path}[/dim]" if path is not None and path.expanduser().exists() else "[dim](defaults)[/dim]"
    console.print(f"\nClient configuration: {source}\n")
    console.print(build_config_table(data))


@config_app.command()
def path() -> None:
    """Show the config file passed with --config, if any."""
    config_file = helpers.get_config_file()
    if config_file is None:
        console.print("[dim]No config file; using defaults and API_* environment variables[/dim]")
        return
    resolved = config_file.expanduser()
    status = "" if resolved.exists() else " [yellow](missing)[/yellow]"
    console.print(f"{resolved}{status}")
