"""
Retry utilities with exponential backoff for chain access.

Every chain read and write in the gateway goes through ResilientChainClient,
which applies one declarative RetryPolicy: a bounded number of attempts,
exponential backoff and a uniform jitter bound.

Usage:
    from x402_gateway.retry import ResilientChainClient, RetryPolicy

    client = ResilientChainClient(RetryPolicy(max_attempts=3, base_delay_ms=1000))

    merchant = await client.with_retry(lambda: registry.get_merchant(conn, merchant_id))

Backoff waits are asyncio sleeps, so cancelling the awaiting task (for example
through a caller deadline) aborts the loop mid-backoff.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Optional,
    Type,
    TypeVar,
)

from .constants import RetryDefaults
from .exceptions import UpstreamChainError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        base_delay_ms: Delay before the second attempt, doubled after each failure
        jitter_ms: Upper bound of the uniform random delay added to each wait
        retryable_exceptions: Exception types that trigger a retry
        non_retryable_exceptions: Exception types raised immediately
        on_retry: Optional callback called before each retry
    """

    max_attempts: int = RetryDefaults.MAX_ATTEMPTS
    base_delay_ms: int = RetryDefaults.BASE_DELAY_MS
    jitter_ms: int = RetryDefaults.JITTER_MS
    retryable_exceptions: tuple[Type[BaseException], ...] = (Exception,)
    non_retryable_exceptions: tuple[Type[BaseException], ...] = ()
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0 or self.jitter_ms < 0:
            raise ValueError("delays must be non-negative")

    def calculate_delay_ms(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based).

        base_delay_ms * 2^(attempt-1) + uniform(0, jitter_ms)
        """
        delay = self.base_delay_ms * (2 ** (attempt - 1))
        if self.jitter_ms > 0:
            delay += random.uniform(0, self.jitter_ms)
        return float(delay)

    def should_retry(self, exception: BaseException) -> bool:
        # Non-retryable takes precedence
        if isinstance(exception, self.non_retryable_exceptions):
            return False
        return isinstance(exception, self.retryable_exceptions)


@dataclass
class RetryStats:
    """Statistics about one retried call.

    Attributes:
        attempts: Total number of attempts (including initial)
        total_delay: Total backoff time in seconds
        success: Whether the operation eventually succeeded
        last_exception: The last exception if operation failed
    """

    attempts: int = 0
    total_delay: float = 0.0
    success: bool = False
    last_exception: Optional[BaseException] = None


async def retry_async(
    operation: Operation[T],
    policy: Optional[RetryPolicy] = None,
    *,
    label: str = "chain call",
    stats: Optional[RetryStats] = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Execute an async operation with retry logic.

    Args:
        operation: Zero-argument callable returning an awaitable
        policy: Retry policy (uses defaults if None)
        label: Name used in log records
        stats: Optional stats object filled in while retrying
        sleep: Awaitable sleep used for backoff

    Returns:
        The return value of the operation

    Raises:
        The last exception raised by the operation once attempts are exhausted,
        or the first non-retryable exception.
    """
    if policy is None:
        policy = RetryPolicy()
    if stats is None:
        stats = RetryStats()

    for attempt in range(1, policy.max_attempts + 1):
        stats.attempts = attempt
        try:
            result = await operation()
            stats.success = True
            return result
        except Exception as e:
            stats.last_exception = e

            if attempt >= policy.max_attempts:
                raise

            if not policy.should_retry(e):
                logger.debug(
                    f"{type(e).__name__} from {label} is not retryable, raising immediately"
                )
                raise

            delay_ms = policy.calculate_delay_ms(attempt)
            delay = delay_ms / 1000.0
            stats.total_delay += delay

            logger.warning(
                f"Retry {attempt}/{policy.max_attempts} for {label} after "
                f"{type(e).__name__}: {e}. Waiting {delay_ms:.0f}ms",
                extra={"attempt": attempt, "delay_ms": round(delay_ms, 1), "operation": label},
            )

            if policy.on_retry:
                policy.on_retry(attempt, e, delay)

            await sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover


class ResilientChainClient:
    """Single execution wrapper for chain reads and writes.

    ``with_retry`` re-raises the operation's own last error; ``execute``
    additionally surfaces exhausted budgets as UpstreamChainError, which is
    what higher components report to their callers.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.total_retries = 0

    def _policy_for(
        self,
        max_attempts: Optional[int],
        base_delay_ms: Optional[int],
    ) -> RetryPolicy:
        if max_attempts is None and base_delay_ms is None:
            return self.policy
        return RetryPolicy(
            max_attempts=max_attempts if max_attempts is not None else self.policy.max_attempts,
            base_delay_ms=base_delay_ms if base_delay_ms is not None else self.policy.base_delay_ms,
            jitter_ms=self.policy.jitter_ms,
            retryable_exceptions=self.policy.retryable_exceptions,
            non_retryable_exceptions=self.policy.non_retryable_exceptions,
            on_retry=self.policy.on_retry,
        )

    async def with_retry(
        self,
        operation: Operation[T],
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        *,
        label: str = "chain call",
        stats: Optional[RetryStats] = None,
    ) -> T:
        stats = stats if stats is not None else RetryStats()
        try:
            return await retry_async(
                operation,
                self._policy_for(max_attempts, base_delay_ms),
                label=label,
                stats=stats,
                sleep=self._sleep,
            )
        finally:
            self.total_retries += max(0, stats.attempts - 1)

    async def execute(self, operation: Operation[T], *, label: str) -> T:
        """Run ``operation`` under the retry policy, mapping failure to UpstreamChainError."""
        stats = RetryStats()
        try:
            return await self.with_retry(operation, label=label, stats=stats)
        except UpstreamChainError:
            raise
        except Exception as e:
            logger.error(
                f"{label} failed after {stats.attempts} attempt(s): {type(e).__name__}: {e}"
            )
            raise UpstreamChainError(
                f"{label} failed after {stats.attempts} attempt(s): {e}",
                operation=label,
                attempts=stats.attempts,
            ) from e


__all__ = [
    "RetryPolicy",
    "RetryStats",
    "ResilientChainClient",
    "retry_async",
]
