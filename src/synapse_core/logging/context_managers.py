"""Scoped log context and timed operation logging."""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from synapse_core.logging.context import get_log_context, set_log_context
from synapse_core.logging.utilities import log_exception, log_with_context


class LogContext:
    """
    Bind tenant, operation and request id for the duration of a block.

    Usage:
        with LogContext(tenant="acme", operation="execute_sql"):
            await executor.execute(...)

    The previous values are restored on exit, including on error.
    """

    def __init__(
        self,
        tenant: Optional[str] = None,
        operation: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        self._bound = {"tenant": tenant, "operation": operation, "request_id": request_id}
        self._saved: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        self._saved = get_log_context()
        set_log_context(**self._bound)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_log_context(**self._saved)
        return False


class OperationContext:
    """
    Time a block and log its outcome once it finishes.

    Success is logged at ``level``, raised to INFO when the block ran longer
    than ``slow_threshold_ms``. Failures are logged at WARNING without a
    traceback; the exception still propagates.
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.DEBUG,
        slow_threshold_ms: Optional[float] = 1000.0,
        **fields: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
        if not isinstance(self.level, int):
            self.level = logging.DEBUG
        self.slow_threshold_ms = slow_threshold_ms
        self.fields = fields
        self._start_time: Optional[float] = None

    @property
    def elapsed_ms(self) -> float:
        if self._start_time is None:
            return 0.0
        return round((time.perf_counter() - self._start_time) * 1000, 2)

    def _is_slow(self, duration_ms: float) -> bool:
        return bool(self.slow_threshold_ms) and duration_ms > self.slow_threshold_ms

    def __enter__(self) -> "OperationContext":
        self._start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = self.elapsed_ms
        fields = {"duration_ms": duration_ms, "operation": self.operation, **self.fields}

        if exc_val is not None:
            log_exception(
                self.logger,
                exc_val,
                f"Failed: {self.operation}",
                level=logging.WARNING,
                include_traceback=False,
                **fields,
            )
            return False

        level = max(self.level, logging.INFO) if self._is_slow(duration_ms) else self.level
        log_with_context(self.logger, level, f"Completed: {self.operation}", **fields)
        return False

    def add_context(self, **kwargs: Any) -> None:
        """Attach fields learned mid-operation, e.g. row counts."""
        self.fields.update(kwargs)


@contextmanager
def log_operation(
    logger: logging.Logger,
    operation: str,
    level: int = logging.DEBUG,
    slow_threshold_ms: Optional[float] = 1000.0,
    **fields: Any,
):
    """Functional form of OperationContext."""
    with OperationContext(
        logger, operation, level=level, slow_threshold_ms=slow_threshold_ms, **fields
    ) as op:
        yield op
