"""Operation-aware retry and backoff policy for caller-level retries.

The executor never retries anything except the single post-refresh attempt.
Everything else is decided here, separately for reads (queries) and writes
(mutations), since re-sending a write is riskier than re-reading.

Decision table (``failure_count`` is the zero-based index of the failure
being judged):

| condition | query | mutation |
|-----------|-------|----------|
| 4xx except 408/429 | no | no |
| 408 or 429 | failure_count < 2 | default |
| NETWORK_ERROR | failure_count < 2 | failure_count < 2 |
| TIMEOUT without HTTP status | default | failure_count < 2 |
| VALIDATION_ERROR / AUTHORIZATION_ERROR | 4xx row | no |
| 5xx / unclassified (default) | failure_count < 3 | failure_count < 1 |

Example usage:
    from dashapi.sync.retry_policy import OperationClass, RetryPolicy, run_with_retry

    policy = RetryPolicy()
    envelope = await run_with_retry(
        lambda: executor.get("/v1/jobs"),
        OperationClass.QUERY,
        policy,
    )
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from dashapi.core.config import RetryPolicyConfig
from dashapi.core.errors import RETRYABLE_CLIENT_STATUSES, ClassifiedError, ErrorCode
from dashapi.core.logging import get_logger

_logger = get_logger("retry_policy")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class OperationClass(str, Enum):
    """Kind of operation being retried."""

    QUERY = "query"
    """Idempotent read."""

    MUTATION = "mutation"
    """Write; retried conservatively."""


@dataclass(frozen=True)
class RetryContext:
    """Inputs for one retry decision.

    Attributes:
        failure_count: Zero-based index of this failure (0 on the first).
        error: The classified failure.
        operation_class: Query or mutation.
    """

    failure_count: int
    error: ClassifiedError
    operation_class: OperationClass

    def __post_init__(self) -> None:
        if self.failure_count < 0:
            raise ValueError(f"failure_count must be >= 0, got {self.failure_count}")


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of ``RetryPolicy.decide``.

    Attributes:
        should_retry: Whether another attempt is allowed.
        delay_seconds: Wait before the next attempt; 0 when not retrying.
        reason: Short machine-friendly label of the rule that matched.
    """

    should_retry: bool
    delay_seconds: float
    reason: str

    def to_dict(self) -> dict[str, object]:
        return {
            "should_retry": self.should_retry,
            "delay_seconds": round(self.delay_seconds, 3),
            "reason": self.reason,
        }


def _is_non_retryable_client_status(status: int | None) -> bool:
    return status is not None and 400 <= status < 500 and status not in RETRYABLE_CLIENT_STATUSES


class RetryPolicy:
    """Decides whether and when a failed operation is retried."""

    def __init__(
        self,
        config: RetryPolicyConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or RetryPolicyConfig()
        self._rng = rng or random.Random()

    def should_retry(self, ctx: RetryContext) -> bool:
        return self._evaluate(ctx)[0]

    def decide(self, ctx: RetryContext) -> RetryDecision:
        allowed, reason = self._evaluate(ctx)
        delay = self.backoff_delay(ctx.failure_count, ctx.operation_class) if allowed else 0.0
        return RetryDecision(should_retry=allowed, delay_seconds=delay, reason=reason)

    def base_delay(self, attempt: int, operation_class: OperationClass) -> float:
        """Capped exponential delay without jitter."""
        if operation_class is OperationClass.QUERY:
            base = self.config.query_base_delay_seconds
            cap = self.config.query_max_delay_seconds
        else:
            base = self.config.mutation_base_delay_seconds
            cap = self.config.mutation_max_delay_seconds
        # Clamp the exponent so huge attempt numbers cannot overflow.
        return min(base * 2 ** min(attempt, 62), cap)

    def backoff_delay(self, attempt: int, operation_class: OperationClass) -> float:
        """Capped exponential delay plus up to ``jitter_fraction`` random jitter."""
        delay = self.base_delay(attempt, operation_class)
        return delay + delay * self.config.jitter_fraction * self._rng.random()

    def _evaluate(self, ctx: RetryContext) -> tuple[bool, str]:
        if ctx.operation_class is OperationClass.QUERY:
            return self._evaluate_query(ctx)
        return self._evaluate_mutation(ctx)

    def _evaluate_query(self, ctx: RetryContext) -> tuple[bool, str]:
        cfg = self.config
        status = ctx.error.http_status
        if _is_non_retryable_client_status(status):
            return False, "client_error"
        if status in RETRYABLE_CLIENT_STATUSES:
            return ctx.failure_count < cfg.query_throttled_max_failures, "throttled"
        if ctx.error.code is ErrorCode.NETWORK_ERROR:
            return ctx.failure_count < cfg.query_network_max_failures, "network"
        return ctx.failure_count < cfg.query_max_failures, "default"

    def _evaluate_mutation(self, ctx: RetryContext) -> tuple[bool, str]:
        cfg = self.config
        code = ctx.error.code
        status = ctx.error.http_status
        if _is_non_retryable_client_status(status):
            return False, "client_error"
        if code is ErrorCode.NETWORK_ERROR or (code is ErrorCode.TIMEOUT and status is None):
            return ctx.failure_count < cfg.mutation_transport_max_failures, "transport"
        if code in (ErrorCode.VALIDATION_ERROR, ErrorCode.AUTHORIZATION_ERROR):
            return False, "rejected"
        return ctx.failure_count < cfg.mutation_max_failures, "default"


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    operation_class: OperationClass,
    policy: RetryPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    on_retry: Callable[[RetryContext, RetryDecision], None] | None = None,
) -> T:
    """Run ``operation`` until it succeeds or the policy gives up.

    Only ClassifiedError failures are judged by the policy; any other
    exception propagates immediately.

    Raises:
        ClassifiedError: The last failure once no further retry is allowed.
    """
    failure_count = 0
    while True:
        try:
            return await operation()
        except ClassifiedError as e:
            ctx = RetryContext(failure_count, e, operation_class)
            decision = policy.decide(ctx)
            if not decision.should_retry:
                _logger.debug(
                    "retry_policy.gave_up",
                    operation_class=operation_class.value,
                    failure_count=failure_count,
                    code=e.code.value,
                    reason=decision.reason,
                )
                raise
            _logger.info(
                "retry_policy.retrying",
                operation_class=operation_class.value,
                failure_count=failure_count,
                code=e.code.value,
                **decision.to_dict(),
            )
            if on_retry is not None:
                on_retry(ctx, decision)
        await sleep(decision.delay_seconds)
        failure_count += 1


__all__ = [
    "OperationClass",
    "RetryContext",
    "RetryDecision",
    "RetryPolicy",
    "run_with_retry",
]
