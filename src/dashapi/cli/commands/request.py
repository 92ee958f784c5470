"""``dashapi request``: issue one API call through the full client pipeline."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import typer

from dashapi.client.request import RequestDescriptor
from dashapi.core.config import DashApiConfig
from dashapi.core.envelope import Envelope
from dashapi.core.errors import ClassifiedError
from dashapi.sync.retry_policy import OperationClass, run_with_retry

from .. import helpers
from ..output import console, output_error, render_classified_error, render_envelope

_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


def _parse_headers(raw_headers: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for raw in raw_headers:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Header must look like 'Name: value', got {raw!r}")
        headers[name.strip()] = value.strip()
    return headers


def _parse_body(data: str | None) -> Any:
    if data is None:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--data is not valid JSON: {e}") from None


def request(
    method: str = typer.Argument(..., help="HTTP method (GET, POST, PUT, PATCH, DELETE)"),
    path: str = typer.Argument(..., help="Path relative to API_BASE_URL, e.g. /v1/jobs"),
    data: str | None = typer.Option(None, "--data", "-d", help="JSON request body"),
    header: list[str] = typer.Option(
        [], "--header", "-H", help="Extra header as 'Name: value' (repeatable)"
    ),
    token_file: Path | None = typer.Option(
        None, "--token-file", help="JSON session file with stored tokens"
    ),
    mutation: bool = typer.Option(
        False, "--mutation", help="Apply the mutation retry policy instead of the query one"
    ),
    retry: bool = typer.Option(
        False, "--retry", help="Retry failures according to the retry policy"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Send one request and print the normalized response.

    A 401 triggers the token refresh and one retry. With --retry, other
    failures are retried by the query (or --mutation) policy.

    Examples:
        dashapi request GET /v1/jobs
        dashapi request POST /v1/jobs --data '{"title": "Engineer"}' --mutation --retry
    """
    method = method.upper()
    if method not in _METHODS:
        output_error(
            f"Unsupported method {method!r}",
            hints=[f"Use one of: {', '.join(_METHODS)}"],
            json_output=json_output,
        )
        raise typer.Exit(2)

    descriptor = RequestDescriptor(
        method,
        path,
        headers=_parse_headers(header),
        json=_parse_body(data),
    )
    config = helpers.load_cli_config(console, token_file=token_file)
    operation_class = OperationClass.MUTATION if mutation else OperationClass.QUERY

    try:
        envelope = asyncio.run(_send(config, descriptor, operation_class, retry))
    except ClassifiedError as e:
        render_classified_error(e, json_output=json_output)
        raise typer.Exit(1) from None

    render_envelope(envelope, json_output=json_output)


async def _send(
    config: DashApiConfig,
    descriptor: RequestDescriptor,
    operation_class: OperationClass,
    retry: bool,
) -> Envelope[Any]:
    async with helpers.build_client(config) as api:
        if not retry:
            return await api.executor.execute(descriptor)
        return await run_with_retry(
            lambda: api.executor.execute(descriptor),
            operation_class,
            api.retry_policy,
        )
