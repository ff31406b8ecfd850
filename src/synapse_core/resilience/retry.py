"""
Resilient request executor with status-aware retry decisions.

One policy shared by the SQL path and the REST path:
- Errors carrying a status in [400, 500): fail immediately (no retry)
- Everything else (network, 5xx, timeouts, unclassified): retry with
  exponential backoff ``base_delay * exponential_base ** attempt_index``
- When attempts run out, the last observed error is raised unchanged
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, TypeVar

from synapse_core.errors.exceptions import (
    classify_exception,
    get_status_code,
    is_retryable_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_BASE_DELAY = 1.0


def _log_retry_failure(
    operation_name: str,
    error: Exception,
    attempt: int,
    config: "RetryConfig",
    retryable: bool,
) -> None:
    """Log a client error or an exhausted retry budget."""
    extra = {
        "operation": operation_name,
        "attempt": attempt + 1,
        "max_attempts": config.max_attempts,
        "error_type": type(error).__name__,
        "error_category": classify_exception(error).value,
        "status_code": get_status_code(error),
        "error_message": str(error)[:200],
    }
    if not retryable:
        logger.warning(
            "Client error for %s, not retrying: %s",
            operation_name,
            str(error)[:200],
            extra=extra,
        )
        return

    logger.error(
        "Max retries exhausted for %s: %s",
        operation_name,
        str(error)[:200],
        extra=extra,
    )


def _safe_invoke_on_retry(
    on_retry: Callable[[Exception, int, float], None],
    error: Exception,
    attempt: int,
    delay: float,
    operation_name: str,
) -> None:
    """Call the on_retry callback, logging any errors it raises."""
    try:
        on_retry(error, attempt, delay)
    except Exception as cb_err:
        logger.warning(
            "Error in on_retry callback for %s: %s",
            operation_name,
            str(cb_err)[:100],
            extra={
                "operation": operation_name,
                "callback_error": str(cb_err)[:100],
            },
        )


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    exponential_base: float = 2.0

    # Optional cap on a single sleep; None keeps the pure exponential schedule
    max_delay: float | None = None

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.exponential_base = float(self.exponential_base)
        if self.max_delay is not None:
            self.max_delay = float(self.max_delay)
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")

    def get_delay(self, attempt: int) -> float:
        """
        Delay before the retry that follows ``attempt``.

        Args:
            attempt: 0-indexed attempt number that just failed

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        if self.max_delay is not None:
            return min(delay, self.max_delay)
        return delay

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """
        Determine if ``error`` raised on ``attempt`` should be retried.

        Args:
            error: The exception that occurred
            attempt: 0-indexed current attempt

        Returns:
            True if another attempt should be made
        """
        if attempt >= self.max_attempts - 1:
            return False
        return is_retryable_error(error)


DEFAULT_RETRY = RetryConfig()


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    *,
    config: RetryConfig | None = None,
    operation_name: str | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
) -> T:
    """
    Run ``operation`` until it succeeds, fails with a client error, or
    exhausts its attempts.

    Args:
        operation: Zero-argument callable returning an awaitable
        max_attempts: Total attempts including the first (ignored if config given)
        base_delay: Seconds before the first retry (ignored if config given)
        config: Full retry configuration
        operation_name: Name used in log records (defaults to the callable's name)
        on_retry: Callback before each retry (error, attempt, delay)

    Returns:
        The operation's result

    Raises:
        The last exception raised by ``operation``.

    Usage:
        rows = await retry_operation(lambda: pool.execute_query(session, sql))
    """
    if config is None:
        config = RetryConfig(max_attempts=max_attempts, base_delay=base_delay)
    name = operation_name or getattr(operation, "__name__", "operation")

    attempt = 0
    while True:
        try:
            result = await operation()
        except Exception as e:
            retryable = is_retryable_error(e)
            if not config.should_retry(e, attempt):
                _log_retry_failure(name, e, attempt, config, retryable)
                raise

            delay = config.get_delay(attempt)
            logger.warning(
                "Retryable error for %s, will retry",
                name,
                extra={
                    "operation": name,
                    "attempt": attempt + 1,
                    "max_attempts": config.max_attempts,
                    "error_category": classify_exception(e).value,
                    "delay_seconds": round(delay, 3),
                    "error_message": str(e)[:200],
                },
            )
            if on_retry:
                _safe_invoke_on_retry(on_retry, e, attempt, delay, name)

            await asyncio.sleep(delay)
            attempt += 1
            continue

        if attempt > 0:
            logger.info(
                "Retry succeeded for %s after %d attempts",
                name,
                attempt + 1,
                extra={
                    "operation": name,
                    "attempt": attempt + 1,
                    "total_attempts": config.max_attempts,
                },
            )
        return result


def with_retry(
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
):
    """
    Decorator form of ``retry_operation`` for async functions.

    Args:
        config: Retry configuration (defaults to DEFAULT_RETRY)
        on_retry: Callback before each retry (error, attempt, delay)

    Usage:
        @with_retry(RetryConfig(max_attempts=3, base_delay=0.5))
        async def fetch_pipeline(name):
            ...
    """
    if config is None:
        config = DEFAULT_RETRY

    def decorator(func: Callable[..., Awaitable[Any]]):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_operation(
                lambda: func(*args, **kwargs),
                config=config,
                operation_name=func.__name__,
                on_retry=on_retry,
            )

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "DEFAULT_RETRY",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_BASE_DELAY",
    "retry_operation",
    "with_retry",
]
