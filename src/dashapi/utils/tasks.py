"""Shared utilities for asyncio.Task lifecycle.

Provides ``log_task_exception`` to extract and log exceptions from
completed tasks. Used by done-callbacks on background loops (scheduler,
connectivity probe, async listeners) so errors are never silently lost.
"""

from __future__ import annotations

import asyncio
from typing import Any


def log_task_exception(
    task: asyncio.Task[Any],
    logger: Any,
    event: str,
    *,
    level: str = "error",
) -> BaseException | None:
    """Extract and log an exception from a completed task.

    Args:
        task: The completed task to inspect.
        logger: A structlog or stdlib logger with ``.error()``/``.warning()`` methods.
        event: Structlog-style event name (e.g. ``"scheduler.loop_died"``).
        level: Log method name, ``"error"`` (default) or ``"warning"``.

    Returns:
        The exception if one was found, ``None`` if the task completed
        normally or was cancelled.
    """
    if task.cancelled():
        return None
    exc = task.exception()
    if exc is not None:
        log_fn = getattr(logger, level, logger.error)
        log_fn(event, error=str(exc), task_name=task.get_name())
    return exc
