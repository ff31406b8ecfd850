"""
Structured logging module.

Provides JSON and console logging with tenant/request context propagation.
"""

from synapse_core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from synapse_core.logging.context_managers import (
    LogContext,
    OperationContext,
    log_operation,
)
from synapse_core.logging.formatters import ConsoleFormatter, JSONFormatter
from synapse_core.logging.setup import get_logger, setup_logging
from synapse_core.logging.utilities import log_exception, log_with_context

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Context Managers
    "LogContext",
    "OperationContext",
    "log_operation",
    # Utilities
    "log_with_context",
    "log_exception",
]
