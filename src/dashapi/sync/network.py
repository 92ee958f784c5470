"""Online/offline and visibility state tracking.

Both trackers hold one boolean and notify listeners only when it actually
changes. The platform (or the ConnectivityProbe) calls ``set_online`` /
``set_visible``; everything else reads ``is_online()`` / ``is_visible()`` or
registers a listener through ``on_change``.

Listeners run in registration order. A listener that raises is logged and
does not stop delivery to the rest; a listener returning a coroutine has it
scheduled as a task on the running loop.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from typing import Any

import httpx

from dashapi.core.logging import get_logger
from dashapi.utils.tasks import log_task_exception

_logger = get_logger("network")

Listener = Callable[[bool], Any]


class Subscription:
    """Handle returned by ``on_change``. Unsubscribing twice is a no-op."""

    __slots__ = ("_cancel",)

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel: Callable[[], None] | None = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        cancel, self._cancel = self._cancel, None
        if cancel is not None:
            cancel()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class _StateObservable:
    """A boolean with ordered change listeners."""

    def __init__(self, name: str, initial: bool) -> None:
        self._name = name
        self._value = initial
        self._listeners: dict[int, Listener] = {}
        self._ids = itertools.count()
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def on_change(self, listener: Listener) -> Subscription:
        """Register ``listener(new_value)``; returns its Subscription."""
        listener_id = next(self._ids)
        self._listeners[listener_id] = listener
        return Subscription(lambda: self._listeners.pop(listener_id, None))

    def _set(self, value: bool) -> bool:
        if value == self._value:
            return False
        self._value = value
        _logger.info(f"{self._name}.changed", value=value, listeners=len(self._listeners))
        self._notify(value)
        return True

    def _notify(self, value: bool) -> None:
        for listener_id, listener in list(self._listeners.items()):
            try:
                result = listener(value)
            except Exception:
                _logger.warning(
                    f"{self._name}.listener_error",
                    listener_id=listener_id,
                    exc_info=True,
                )
                continue
            if asyncio.iscoroutine(result):
                self._schedule(result, listener_id)

    def _schedule(self, coro: Any, listener_id: int) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            _logger.warning(f"{self._name}.listener_dropped", listener_id=listener_id, reason="no running loop")
            return
        task = loop.create_task(coro, name=f"dashapi-{self._name}-listener-{listener_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        log_task_exception(task, _logger, f"{self._name}.listener_error", level="warning")


class NetworkTracker(_StateObservable):
    """Tracks whether the client believes it is online."""

    def __init__(self, initial_online: bool = True) -> None:
        super().__init__("network", initial_online)

    def is_online(self) -> bool:
        return self._value

    def set_online(self, online: bool) -> bool:
        """Record the platform's connectivity signal.

        Returns:
            True if the state changed and listeners were notified.
        """
        return self._set(online)


class VisibilityTracker(_StateObservable):
    """Tracks whether the application is currently visible to the user."""

    def __init__(self, initial_visible: bool = True) -> None:
        super().__init__("visibility", initial_visible)

    def is_visible(self) -> bool:
        return self._value

    def set_visible(self, visible: bool) -> bool:
        return self._set(visible)


class ConnectivityProbe:
    """Verifies connectivity by periodically sending ``HEAD ping_url``.

    A 2xx answer marks the tracker online; any other status, a transport
    error or a timeout marks it offline. A disabled probe never starts its
    loop, but ``check_now`` still works for one-off checks.
    """

    def __init__(
        self,
        tracker: NetworkTracker,
        client: httpx.AsyncClient,
        ping_url: str,
        *,
        interval: float = 30.0,
        timeout: float = 5.0,
        enabled: bool = True,
    ) -> None:
        self._tracker = tracker
        self._client = client
        self.ping_url = ping_url
        self.interval = interval
        self.timeout = timeout
        self.enabled = enabled
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def ping(self) -> bool:
        """Send one probe without touching the tracker."""
        try:
            response = await asyncio.wait_for(
                self._client.head(
                    self.ping_url,
                    headers={"Cache-Control": "no-cache"},
                    timeout=self.timeout,
                ),
                timeout=self.timeout,
            )
        except (TimeoutError, httpx.RequestError) as e:
            _logger.debug("probe.failed", url=self.ping_url, error_type=type(e).__name__)
            return False
        return response.is_success

    async def check_now(self) -> bool:
        """Probe once and record the result on the tracker."""
        online = await self.ping()
        self._tracker.set_online(online)
        return online

    async def start(self) -> None:
        """Start the periodic probe loop. Does nothing when disabled."""
        if not self.enabled:
            _logger.info("probe.disabled", url=self.ping_url)
            return
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="dashapi-connectivity-probe")
        self._task.add_done_callback(self._on_loop_done)
        _logger.info("probe.started", url=self.ping_url, interval=self.interval)

    async def stop(self) -> None:
        """Stop the probe loop."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        _logger.info("probe.stopped")

    async def _loop(self) -> None:
        while self._running:
            await self.check_now()
            await asyncio.sleep(self.interval)

    def _on_loop_done(self, task: asyncio.Task[None]) -> None:
        log_task_exception(task, _logger, "probe.loop_died")


__all__ = [
    "ConnectivityProbe",
    "Listener",
    "NetworkTracker",
    "Subscription",
    "VisibilityTracker",
]
