"""Tests for BackgroundSyncScheduler.

The revalidator is a recording fake, so these tests check gating and timer
wiring without involving the cache.
"""

from __future__ import annotations

import asyncio
from collections.abc import Hashable, Iterable

import pytest

from dashapi.core.config import SyncConfig
from dashapi.sync.network import NetworkTracker, VisibilityTracker
from dashapi.sync.scheduler import BackgroundSyncScheduler


class RecordingRevalidator:
    """Records every refetch call."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[dict] = []
        self.fail = fail

    async def refetch(
        self,
        prefix: Iterable[Hashable] = (),
        *,
        active_only: bool = False,
        stale_only: bool = False,
        max_age: float | None = None,
    ) -> int:
        self.calls.append({
            "prefix": tuple(prefix),
            "active_only": active_only,
            "stale_only": stale_only,
            "max_age": max_age,
        })
        if self.fail:
            raise RuntimeError("cache exploded")
        return 1

    @property
    def prefixes(self) -> list[tuple]:
        return [call["prefix"] for call in self.calls]


@pytest.fixture
def revalidator() -> RecordingRevalidator:
    return RecordingRevalidator()


@pytest.fixture
def network() -> NetworkTracker:
    return NetworkTracker()


@pytest.fixture
def visibility() -> VisibilityTracker:
    return VisibilityTracker()


@pytest.fixture
def scheduler(revalidator, network, visibility) -> BackgroundSyncScheduler:
    return BackgroundSyncScheduler(revalidator, network, visibility, SyncConfig())


# ─── Ticks and gating ────────────────────────────────────────────────────


class TestTicks:
    @pytest.mark.asyncio
    async def test_critical_tick_sweeps_critical_prefixes(self, scheduler, revalidator):
        assert await scheduler.tick_critical() is True

        assert revalidator.prefixes == [("dashboard",), ("notifications",)]
        assert all(call["active_only"] and call["stale_only"] for call in revalidator.calls)
        assert revalidator.calls[0]["max_age"] == 900

    @pytest.mark.asyncio
    async def test_background_tick_sweeps_everything(self, scheduler, revalidator):
        assert await scheduler.tick_background() is True
        assert revalidator.prefixes == [()]

    @pytest.mark.asyncio
    async def test_offline_ticks_do_nothing(self, scheduler, revalidator, network):
        network.set_online(False)

        assert await scheduler.tick_critical() is False
        assert await scheduler.tick_background() is False
        assert revalidator.calls == []

    @pytest.mark.asyncio
    async def test_hidden_ticks_do_nothing(self, scheduler, revalidator, visibility):
        visibility.set_visible(False)

        assert await scheduler.tick_critical() is False
        assert await scheduler.tick_background() is False
        assert revalidator.calls == []

    @pytest.mark.asyncio
    async def test_going_offline_mid_tick_skips_remaining_prefixes(self, network, visibility):
        class DisconnectingRevalidator(RecordingRevalidator):
            async def refetch(self, prefix=(), **kwargs) -> int:
                result = await super().refetch(prefix, **kwargs)
                network.set_online(False)
                return result

        revalidator = DisconnectingRevalidator()
        scheduler = BackgroundSyncScheduler(revalidator, network, visibility, SyncConfig())

        assert await scheduler.tick_critical() is True

        assert revalidator.prefixes == [("dashboard",)]

    @pytest.mark.asyncio
    async def test_sweep_failure_is_contained(self, network, visibility):
        scheduler = BackgroundSyncScheduler(RecordingRevalidator(fail=True), network, visibility)
        assert await scheduler.tick_background() is True


# ─── Event-driven sweeps ─────────────────────────────────────────────────


class TestStateTriggers:
    @pytest.mark.asyncio
    async def test_becoming_visible_triggers_sweep(self, scheduler, revalidator, visibility):
        visibility.set_visible(False)
        scheduler.start()

        visibility.set_visible(True)
        await asyncio.sleep(0.01)

        assert revalidator.prefixes == [()]
        await scheduler.aclose()

    @pytest.mark.asyncio
    async def test_reconnecting_triggers_sweep(self, scheduler, revalidator, network):
        network.set_online(False)
        scheduler.start()

        network.set_online(True)
        await asyncio.sleep(0.01)

        assert revalidator.prefixes == [()]
        await scheduler.aclose()

    @pytest.mark.asyncio
    async def test_reconnecting_while_hidden_does_not_sweep(
        self, scheduler, revalidator, network, visibility
    ):
        visibility.set_visible(False)
        network.set_online(False)
        scheduler.start()

        network.set_online(True)
        await asyncio.sleep(0.01)

        assert revalidator.calls == []
        await scheduler.aclose()

    @pytest.mark.asyncio
    async def test_going_offline_does_not_sweep(self, scheduler, revalidator, network):
        scheduler.start()

        network.set_online(False)
        await asyncio.sleep(0.01)

        assert revalidator.calls == []
        await scheduler.aclose()


# ─── Timers and teardown ─────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_timers_fire(self, revalidator, network, visibility):
        config = SyncConfig(critical_interval_seconds=0.01, background_interval_seconds=0.015)
        scheduler = BackgroundSyncScheduler(revalidator, network, visibility, config)

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.aclose()

        assert ("dashboard",) in revalidator.prefixes
        assert () in revalidator.prefixes

    @pytest.mark.asyncio
    async def test_timers_gated_while_hidden(self, revalidator, network, visibility):
        config = SyncConfig(critical_interval_seconds=0.01, background_interval_seconds=0.01)
        scheduler = BackgroundSyncScheduler(revalidator, network, visibility, config)
        visibility.set_visible(False)

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.aclose()

        assert revalidator.calls == []

    @pytest.mark.asyncio
    async def test_teardown_removes_timers_and_listeners(self, scheduler, network, visibility):
        teardown = scheduler.start()
        assert scheduler.running
        assert network.listener_count == 1
        assert visibility.listener_count == 1

        teardown()
        teardown()
        await asyncio.sleep(0)

        assert not scheduler.running
        assert network.listener_count == 0
        assert visibility.listener_count == 0

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, scheduler, network):
        scheduler.start()
        scheduler.start()

        assert network.listener_count == 1
        await scheduler.aclose()

    @pytest.mark.asyncio
    async def test_no_sweeps_after_teardown(self, scheduler, revalidator, visibility):
        scheduler.start()
        await scheduler.aclose()

        visibility.set_visible(False)
        visibility.set_visible(True)
        await asyncio.sleep(0.01)

        assert revalidator.calls == []
