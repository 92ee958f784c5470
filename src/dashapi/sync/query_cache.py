"""Stale-while-revalidate query cache.

Entries are addressed by tuple keys such as ``("jobs", "list", 2)``. Every
operation that takes a ``prefix`` matches the entries whose key starts with
that prefix; the empty prefix matches everything.

Reads go through ``fetch``: fresh data is served from memory, stale or
missing data is fetched under the query retry policy, and concurrent fetches
of the same key share one in-flight task. Writes go through ``mutate`` under
the mutation policy. The background scheduler drives ``refetch``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable, Iterable
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

from dashapi.core.config import QueryCacheConfig
from dashapi.core.errors import ClassifiedError
from dashapi.core.logging import get_logger
from dashapi.sync.network import Subscription
from dashapi.sync.retry_policy import OperationClass, RetryPolicy, Sleep, run_with_retry

_logger = get_logger("query_cache")

T = TypeVar("T")

QueryKey = tuple[Hashable, ...]
Fetcher = Callable[[], Awaitable[Any]]
KeyLike = QueryKey | list[Hashable] | str


def make_key(key: KeyLike | Iterable[Hashable]) -> QueryKey:
    """Coerce a key or prefix to a tuple. A bare string is a one-element key."""
    if isinstance(key, str):
        return (key,)
    return tuple(key)


@dataclass
class QueryEntry:
    """Cached state of one query key."""

    key: QueryKey
    fetcher: Fetcher | None = None
    data: Any = None
    has_data: bool = False
    updated_at: float | None = None
    created_at: float = 0.0
    stale_time: float | None = None
    error: ClassifiedError | None = None
    invalidated: bool = False
    observers: int = 0
    in_flight: asyncio.Task[Any] | None = None

    @property
    def status(self) -> Literal["pending", "success", "error"]:
        if self.error is not None:
            return "error"
        return "success" if self.has_data else "pending"

    @property
    def active(self) -> bool:
        return self.observers > 0

    @property
    def fetching(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()


class QueryCache:
    """In-memory stale-while-revalidate cache.

    Args:
        policy: Retry policy applied to fetches and mutations.
        stale_time: Age in seconds after which data is stale.
        gc_time: Unobserved entries older than this are dropped by ``prune``.
        clock: Monotonic clock, injectable for tests.
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        stale_time: float = 300.0,
        gc_time: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.stale_time = stale_time
        self.gc_time = gc_time
        self._clock = clock
        self._sleep = sleep
        self._entries: dict[QueryKey, QueryEntry] = {}
        self._detached: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_config(cls, config: QueryCacheConfig, policy: RetryPolicy | None = None) -> QueryCache:
        return cls(policy, stale_time=config.stale_time_seconds, gc_time=config.gc_time_seconds)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if isinstance(key, (tuple, list, str)):
            return make_key(key) in self._entries
        return False

    # ─── Reads ────────────────────────────────────────────────────────

    def entry(self, key: KeyLike) -> QueryEntry | None:
        return self._entries.get(make_key(key))

    def get_data(self, key: KeyLike) -> Any:
        """Cached data for ``key`` without fetching, or None."""
        entry = self.entry(key)
        return entry.data if entry is not None and entry.has_data else None

    def get_error(self, key: KeyLike) -> ClassifiedError | None:
        entry = self.entry(key)
        return entry.error if entry is not None else None

    def is_fetching(self, key: KeyLike) -> bool:
        entry = self.entry(key)
        return entry is not None and entry.fetching

    def is_stale(self, key: KeyLike, max_age: float | None = None) -> bool:
        entry = self.entry(key)
        return entry is None or self._is_entry_stale(entry, max_age)

    async def fetch(
        self,
        key: KeyLike,
        fetcher: Fetcher,
        *,
        stale_time: float | None = None,
    ) -> Any:
        """Return data for ``key``, fetching it when missing or stale.

        Raises:
            ClassifiedError: The last failure once the query policy gives up.
        """
        entry = self._get_or_create(make_key(key))
        entry.fetcher = fetcher
        if stale_time is not None:
            entry.stale_time = stale_time
        if entry.has_data and not self._is_entry_stale(entry):
            _logger.debug("query_cache.hit", key=entry.key)
            return entry.data
        return await self._revalidate(entry)

    def watch(self, key: KeyLike, fetcher: Fetcher) -> Subscription:
        """Mark ``key`` as observed so background sweeps refetch it."""
        entry = self._get_or_create(make_key(key))
        entry.fetcher = fetcher
        entry.observers += 1

        def _release() -> None:
            entry.observers = max(0, entry.observers - 1)

        return Subscription(_release)

    # ─── Revalidation ─────────────────────────────────────────────────

    async def refetch(
        self,
        prefix: KeyLike | Iterable[Hashable] = (),
        *,
        active_only: bool = False,
        stale_only: bool = False,
        max_age: float | None = None,
    ) -> int:
        """Revalidate matching entries concurrently.

        Args:
            prefix: Key prefix to match; empty matches every entry.
            active_only: Only entries with at least one observer.
            stale_only: Only entries that are stale (or older than ``max_age``).
            max_age: Extra staleness bound in seconds for ``stale_only``.

        Returns:
            Number of entries refetched. Failures are logged and recorded on
            the entry rather than raised.
        """
        self.prune()
        selected = [
            entry
            for entry in self._match(make_key(prefix))
            if entry.fetcher is not None
            and (not active_only or entry.active)
            and (not stale_only or self._is_entry_stale(entry, max_age))
        ]
        if not selected:
            return 0

        results = await asyncio.gather(
            *(self._revalidate(entry) for entry in selected),
            return_exceptions=True,
        )
        for entry, result in zip(selected, results, strict=True):
            if isinstance(result, ClassifiedError):
                _logger.warning(
                    "query_cache.refetch_failed",
                    key=entry.key,
                    code=result.code.value,
                    http_status=result.http_status,
                )
            elif isinstance(result, BaseException):
                _logger.error(
                    "query_cache.refetch_crashed",
                    key=entry.key,
                    error=str(result),
                    error_type=type(result).__name__,
                )
        _logger.debug("query_cache.refetched", prefix=make_key(prefix), count=len(selected))
        return len(selected)

    def invalidate(self, prefix: KeyLike | Iterable[Hashable] = ()) -> int:
        """Mark matching entries stale regardless of age."""
        entries = list(self._match(make_key(prefix)))
        for entry in entries:
            entry.invalidated = True
        return len(entries)

    # ─── Writes ───────────────────────────────────────────────────────

    async def mutate(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a write under the mutation retry policy."""
        return await run_with_retry(
            operation, OperationClass.MUTATION, self.policy, sleep=self._sleep
        )

    def set_data(self, key: KeyLike, data: Any) -> None:
        """Store ``data`` for ``key`` as fresh."""
        entry = self._get_or_create(make_key(key))
        self._store(entry, data)

    def remove(self, prefix: KeyLike | Iterable[Hashable] = ()) -> int:
        """Drop matching entries.

        In-flight fetches of removed entries run to completion for the callers
        already awaiting them, but their results are not cached.
        """
        keys = [entry.key for entry in self._match(make_key(prefix))]
        for key in keys:
            entry = self._entries.pop(key)
            if entry.fetching:
                assert entry.in_flight is not None
                self._detached.add(entry.in_flight)
                entry.in_flight.add_done_callback(self._detached.discard)
        return len(keys)

    def clear(self) -> None:
        """Drop every entry (e.g. on logout)."""
        removed = self.remove(())
        _logger.info("query_cache.cleared", removed=removed)

    def prune(self) -> int:
        """Drop unobserved, idle entries older than ``gc_time``."""
        now = self._clock()
        expired = [
            entry.key
            for entry in self._entries.values()
            if not entry.active
            and not entry.fetching
            and now - (entry.updated_at if entry.updated_at is not None else entry.created_at)
            >= self.gc_time
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            _logger.debug("query_cache.pruned", count=len(expired))
        return len(expired)

    async def aclose(self) -> None:
        """Cancel all in-flight fetches."""
        tasks = [e.in_flight for e in self._entries.values() if e.fetching and e.in_flight]
        tasks.extend(self._detached)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ─── Internals ────────────────────────────────────────────────────

    def _get_or_create(self, key: QueryKey) -> QueryEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = QueryEntry(key=key, created_at=self._clock())
            self._entries[key] = entry
        return entry

    def _match(self, prefix: QueryKey) -> Iterable[QueryEntry]:
        n = len(prefix)
        return [entry for key, entry in self._entries.items() if key[:n] == prefix]

    def _is_entry_stale(self, entry: QueryEntry, max_age: float | None = None) -> bool:
        if entry.invalidated or not entry.has_data or entry.updated_at is None:
            return True
        age = self._clock() - entry.updated_at
        stale_time = entry.stale_time if entry.stale_time is not None else self.stale_time
        if age >= stale_time:
            return True
        return max_age is not None and age >= max_age

    def _store(self, entry: QueryEntry, data: Any) -> None:
        entry.data = data
        entry.has_data = True
        entry.updated_at = self._clock()
        entry.invalidated = False
        entry.error = None

    async def _revalidate(self, entry: QueryEntry) -> Any:
        task = entry.in_flight
        if task is None or task.done():
            task = asyncio.create_task(self._run_fetch(entry), name=f"dashapi-query-{entry.key!r}")
            task.add_done_callback(_consume_result)
            entry.in_flight = task
        return await asyncio.shield(task)

    async def _run_fetch(self, entry: QueryEntry) -> Any:
        fetcher = entry.fetcher
        assert fetcher is not None
        try:
            data = await run_with_retry(
                fetcher, OperationClass.QUERY, self.policy, sleep=self._sleep
            )
        except ClassifiedError as e:
            entry.error = e
            raise
        finally:
            entry.in_flight = None
        self._store(entry, data)
        return data


def _consume_result(task: asyncio.Task[Any]) -> None:
    """Mark a shared fetch's exception as retrieved; callers already got it."""
    if not task.cancelled():
        task.exception()


__all__ = [
    "Fetcher",
    "QueryCache",
    "QueryEntry",
    "QueryKey",
    "make_key",
]
