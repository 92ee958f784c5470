"""``dashapi ping``: one connectivity probe against the health URL."""

from __future__ import annotations

import asyncio
import time

import typer

from dashapi.core.config import DashApiConfig
from dashapi.sync.network import ConnectivityProbe, NetworkTracker

from .. import helpers
from ..output import console, print_json


def ping(
    url: str | None = typer.Option(
        None, "--url", "-u", help="URL to probe (default: connectivity.ping_url or {base_url}/ping)"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Probe connectivity with a HEAD request. Exit code 1 when offline."""
    config = helpers.load_cli_config(console)
    target = url or config.ping_url
    online, elapsed = asyncio.run(_probe(config, target))

    if json_output:
        print_json({"url": target, "online": online, "elapsed_seconds": round(elapsed, 3)})
    elif online:
        console.print(f"[green]online[/green]  {target}  [dim]{elapsed * 1000:.0f} ms[/dim]")
    else:
        console.print(f"[red]offline[/red] {target}")

    if not online:
        raise typer.Exit(1)


async def _probe(config: DashApiConfig, target: str) -> tuple[bool, float]:
    async with helpers.build_client(config) as api:
        probe = ConnectivityProbe(
            NetworkTracker(),
            api.http,
            target,
            timeout=config.connectivity.timeout_seconds,
        )
        started = time.monotonic()
        online = await probe.check_now()
        return online, time.monotonic() - started
