"""Retry executor shared by SQL execution and REST calls."""

from synapse_core.resilience.retry import (
    DEFAULT_RETRY,
    RetryConfig,
    retry_operation,
    with_retry,
)

__all__ = ["RetryConfig", "DEFAULT_RETRY", "retry_operation", "with_retry"]
