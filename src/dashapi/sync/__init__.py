"""Caller-level retries, the query cache and background synchronization."""

from dashapi.sync.network import ConnectivityProbe, NetworkTracker, Subscription, VisibilityTracker
from dashapi.sync.query_cache import QueryCache
from dashapi.sync.retry_policy import (
    OperationClass,
    RetryContext,
    RetryDecision,
    RetryPolicy,
    run_with_retry,
)
from dashapi.sync.scheduler import BackgroundSyncScheduler

__all__ = [
    "BackgroundSyncScheduler",
    "ConnectivityProbe",
    "NetworkTracker",
    "OperationClass",
    "QueryCache",
    "RetryContext",
    "RetryDecision",
    "RetryPolicy",
    "Subscription",
    "VisibilityTracker",
    "run_with_retry",
]
