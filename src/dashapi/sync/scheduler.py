"""Background synchronization scheduler.

Two independent timers drive cache revalidation:

- the critical timer sweeps each ``critical_prefixes`` entry (dashboard
  stats, notifications) every ``critical_interval_seconds``;
- the background timer sweeps every active query every
  ``background_interval_seconds``.

Becoming visible while online, or coming back online while visible, triggers
an immediate full sweep. Every sweep is gated on the client being online
*and* visible; a tick that fails the gate does nothing.

``start()`` returns a teardown callable that cancels both timers and removes
both listeners. Callers must invoke it (or ``await aclose()``) on shutdown.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable, Iterable
from typing import Any, Protocol

from dashapi.core.config import SyncConfig
from dashapi.core.logging import get_logger
from dashapi.sync.network import NetworkTracker, Subscription, VisibilityTracker
from dashapi.utils.tasks import log_task_exception

_logger = get_logger("scheduler")


class Revalidator(Protocol):
    """Protocol for cache revalidation (satisfied by QueryCache)."""

    async def refetch(
        self,
        prefix: Iterable[Hashable] = (),
        *,
        active_only: bool = False,
        stale_only: bool = False,
        max_age: float | None = None,
    ) -> int: ...


class BackgroundSyncScheduler:
    """Periodically revalidates the cache while the app is online and visible."""

    def __init__(
        self,
        revalidator: Revalidator,
        network: NetworkTracker,
        visibility: VisibilityTracker,
        config: SyncConfig | None = None,
    ) -> None:
        self._revalidator = revalidator
        self._network = network
        self._visibility = visibility
        self.config = config or SyncConfig()
        self._timers: list[asyncio.Task[None]] = []
        self._subscriptions: list[Subscription] = []
        self._sweeps: set[asyncio.Task[Any]] = set()

    @property
    def running(self) -> bool:
        return bool(self._timers)

    def can_sync(self) -> bool:
        return self._network.is_online() and self._visibility.is_visible()

    def start(self) -> Callable[[], None]:
        """Start both timers and subscribe to state changes.

        Must be called from a running event loop. Calling it again while
        running returns the same teardown without starting new timers.
        """
        if self._timers:
            return self.stop
        cfg = self.config
        self._timers = [
            asyncio.create_task(
                self._timer("critical", cfg.critical_interval_seconds, self.tick_critical),
                name="dashapi-sync-critical",
            ),
            asyncio.create_task(
                self._timer("background", cfg.background_interval_seconds, self.tick_background),
                name="dashapi-sync-background",
            ),
        ]
        for timer in self._timers:
            timer.add_done_callback(self._on_timer_done)
        self._subscriptions = [
            self._visibility.on_change(self._on_visibility_change),
            self._network.on_change(self._on_network_change),
        ]
        _logger.info(
            "scheduler.started",
            critical_interval=cfg.critical_interval_seconds,
            background_interval=cfg.background_interval_seconds,
        )
        return self.stop

    def stop(self) -> None:
        """Cancel timers and pending sweeps, and unsubscribe. Idempotent."""
        if not self._timers and not self._subscriptions and not self._sweeps:
            return
        for task in [*self._timers, *self._sweeps]:
            task.cancel()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._timers = []
        self._subscriptions = []
        _logger.info("scheduler.stopped")

    async def aclose(self) -> None:
        """Stop and wait for every cancelled task to finish."""
        tasks = [*self._timers, *self._sweeps]
        self.stop()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def tick_critical(self) -> bool:
        """Sweep each critical prefix. Returns False when gated.

        The gate is checked again before every prefix, so going offline or
        hidden mid-tick skips the remaining sweeps.
        """
        if not self._gate("critical"):
            return False
        for prefix in self.config.critical_prefixes:
            if not self._gate("critical"):
                break
            await self._sweep(prefix)
        return True

    async def tick_background(self) -> bool:
        """Sweep every active query. Returns False when gated."""
        if not self._gate("background"):
            return False
        await self._sweep(())
        return True

    def _gate(self, timer: str) -> bool:
        if self.can_sync():
            return True
        _logger.debug(
            "scheduler.tick_skipped",
            timer=timer,
            online=self._network.is_online(),
            visible=self._visibility.is_visible(),
        )
        return False

    async def _sweep(self, prefix: tuple[Hashable, ...]) -> None:
        try:
            count = await self._revalidator.refetch(
                prefix,
                active_only=True,
                stale_only=True,
                max_age=self.config.max_stale_seconds,
            )
        except Exception:
            _logger.warning("scheduler.sweep_failed", prefix=prefix, exc_info=True)
            return
        _logger.debug("scheduler.swept", prefix=prefix, refetched=count)

    async def _timer(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[bool]],
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            _logger.debug("scheduler.timer_fired", timer=name)
            await tick()

    def _on_timer_done(self, task: asyncio.Task[None]) -> None:
        log_task_exception(task, _logger, "scheduler.timer_died")

    def _spawn_sweep(self, reason: str) -> None:
        _logger.info("scheduler.sweep_triggered", reason=reason)
        task = asyncio.get_running_loop().create_task(
            self.tick_background(), name=f"dashapi-sync-{reason}"
        )
        self._sweeps.add(task)
        task.add_done_callback(self._on_sweep_done)

    def _on_sweep_done(self, task: asyncio.Task[Any]) -> None:
        self._sweeps.discard(task)
        log_task_exception(task, _logger, "scheduler.sweep_crashed")

    def _on_visibility_change(self, visible: bool) -> None:
        if visible and self._network.is_online():
            self._spawn_sweep("visible")

    def _on_network_change(self, online: bool) -> None:
        if online and self._visibility.is_visible():
            self._spawn_sweep("reconnected")


__all__ = ["BackgroundSyncScheduler", "Revalidator"]
