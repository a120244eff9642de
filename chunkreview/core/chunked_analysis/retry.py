"""Retry with exponential backoff and a per-attempt timeout.

Wraps any zero-argument coroutine factory. Every attempt gets its own
asyncio.wait_for() budget, so a slow attempt never shortens the next one.
A timeout is handled exactly like any other error. The outcome is returned
as a RetryResult value instead of an exception so callers can keep going.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

import backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration, one per pipeline run.

    Wait before attempt n+1 is min(initial_delay * backoff_multiplier**(n-1), max_delay).
    Total attempts on an always-failing operation is max_retries + 1.
    """
    max_retries: int = 1
    initial_delay: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay: float = 4.0
    per_attempt_timeout: float = 120.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )
        if self.per_attempt_timeout <= 0:
            raise ValueError(
                f"per_attempt_timeout must be positive, got {self.per_attempt_timeout}"
            )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass
class RetryResult(Generic[T]):
    """Terminal state of a retried operation."""
    success: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    waits: List[float] = field(default_factory=list)

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        if isinstance(self.error, asyncio.TimeoutError):
            return "timed out"
        return str(self.error) or type(self.error).__name__


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str = "operation",
) -> RetryResult[T]:
    """Run operation until it succeeds or policy.max_attempts is used up.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        policy: Retry/timeout configuration
        label: Name used in log messages (e.g. the unit's file name)

    Returns:
        RetryResult with the value on success, or the last error on failure
    """
    attempts = 0
    waits: List[float] = []

    async def _attempt():
        nonlocal attempts
        attempts += 1
        return await asyncio.wait_for(operation(), timeout=policy.per_attempt_timeout)

    def _on_backoff(details: dict):
        waits.append(details["wait"])
        exc = details.get("exception")
        logger.warning(
            f"{label}: attempt {details['tries']}/{policy.max_attempts} failed "
            f"({type(exc).__name__}: {exc}), retrying in {details['wait']:.2f}s"
        )

    retrying = backoff.on_exception(
        backoff.expo,
        Exception,
        max_tries=policy.max_attempts,
        jitter=None,
        on_backoff=_on_backoff,
        logger=None,
        base=policy.backoff_multiplier,
        factor=policy.initial_delay,
        max_value=policy.max_delay,
    )(_attempt)

    try:
        value = await retrying()
    except Exception as e:
        logger.error(
            f"{label}: retries exhausted after {attempts} attempts "
            f"({type(e).__name__}: {e})"
        )
        return RetryResult(success=False, error=e, attempts=attempts, waits=waits)

    return RetryResult(success=True, value=value, attempts=attempts, waits=waits)
