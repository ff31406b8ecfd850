"""
Error classification and exception hierarchy.

Provides:
- WorkspaceError hierarchy for typed exceptions
- Classification utilities used by the retry executor
- SQL driver error classification and diagnostic hints
- Structured failure payloads
"""

from synapse_core.errors.classifiers import (
    SqlErrorClassifier,
    classify_driver_error,
    get_error_hint,
)
from synapse_core.errors.exceptions import (
    AuthenticationError,
    ClientRequestError,
    ConfigurationError,
    ConnectionError,
    TransientError,
    # Base class
    WorkspaceError,
    # Classification utilities
    classify_exception,
    classify_http_status,
    error_for_status,
    get_status_code,
    is_client_status,
    is_retryable_error,
    wrap_exception,
)
from synapse_core.errors.payload import (
    create_error_result,
    create_success_result,
    validate_required_parameters,
)
from synapse_core.types import ErrorCategory

__all__ = [
    # Enums
    "ErrorCategory",
    # Base class
    "WorkspaceError",
    # Taxonomy
    "AuthenticationError",
    "ConnectionError",
    "ClientRequestError",
    "ConfigurationError",
    "TransientError",
    # Classification utilities
    "classify_exception",
    "classify_http_status",
    "error_for_status",
    "get_status_code",
    "is_client_status",
    "is_retryable_error",
    "wrap_exception",
    # SQL classification
    "SqlErrorClassifier",
    "classify_driver_error",
    "get_error_hint",
    # Payloads
    "create_error_result",
    "create_success_result",
    "validate_required_parameters",
]
