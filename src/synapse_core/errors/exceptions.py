"""
Unified exception hierarchy for the workspace session layer.

Typed exceptions carry an ErrorCategory and, where one exists, an HTTP-like
status code so that the retry executor can decide without string parsing:
- AuthenticationError: credential acquisition failed
- ConnectionError: a SQL session failed to open or died mid-use
- ClientRequestError: 4xx-equivalent, never retried
- TransientError: network, 5xx-equivalent, timeout; retried with backoff
"""

from synapse_core.types import ErrorCategory


class WorkspaceError(Exception):
    """
    Base exception for all workspace session errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
        status_code: HTTP-like status, if the failure has one
        request_id: Service correlation id (x-ms-request-id), if known
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
        status_code: int | None = None,
        request_id: str | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        self.status_code = status_code
        self.request_id = request_id
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        if is_client_status(self.status_code):
            return False
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )

    @property
    def should_refresh_auth(self) -> bool:
        return self.category == ErrorCategory.AUTH or self.status_code == 401

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthenticationError(WorkspaceError):
    """Credential acquisition failed or no strategy could produce a token."""

    category = ErrorCategory.AUTH


# =============================================================================
# Transient Errors (retried by the executor)
# =============================================================================


class TransientError(WorkspaceError):
    """Network failure, 5xx-equivalent response or timeout."""

    category = ErrorCategory.TRANSIENT


class ConnectionError(TransientError):
    """SQL session failed to open or died mid-use; the session is evicted."""

    pass


# =============================================================================
# Client Errors (never retried)
# =============================================================================


class ClientRequestError(WorkspaceError):
    """Bad statement, not found, forbidden: retrying cannot help."""

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
        status_code: int | None = 400,
        request_id: str | None = None,
    ):
        super().__init__(message, cause, context, status_code, request_id)


class ConfigurationError(ClientRequestError):
    """Unknown tenant, missing pool descriptor or invalid settings."""

    pass


# =============================================================================
# Error Classification Utilities
# =============================================================================

# Markers for string-based detection (fallback for foreign exceptions)
AUTH_ERROR_MARKERS = frozenset(
    {
        "unauthorized",
        "authentication",
        "token expired",
        "invalid token",
        "aadsts",
        "credentialunavailable",
    }
)

TRANSIENT_ERROR_MARKERS = frozenset(
    {
        "timeout",
        "timed out",
        "connection",
        "temporarily unavailable",
        "service unavailable",
        "gateway",
        "socket",
        "broken pipe",
    }
)


def is_client_status(status_code: int | None) -> bool:
    """True when ``status_code`` is a 4xx client error."""
    return status_code is not None and 400 <= status_code < 500


def get_status_code(exc: BaseException) -> int | None:
    """
    Extract an HTTP-like status from an exception.

    Reads ``WorkspaceError.status_code`` first, then the attributes used by
    aiohttp (``ClientResponseError.status``) and azure-core
    (``HttpResponseError.status_code``).
    """
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify an HTTP status code into an error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into an error category."""
    if isinstance(exc, WorkspaceError):
        if is_client_status(exc.status_code):
            return ErrorCategory.PERMANENT
        return exc.category

    status = get_status_code(exc)
    if status is not None:
        return classify_http_status(status)

    if isinstance(exc, (OSError, TimeoutError)):
        return ErrorCategory.TRANSIENT

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    if any(m in exc_type or m in exc_str for m in TRANSIENT_ERROR_MARKERS):
        return ErrorCategory.TRANSIENT

    if any(m in exc_type or m in exc_str for m in AUTH_ERROR_MARKERS):
        return ErrorCategory.AUTH

    return ErrorCategory.UNKNOWN


def is_retryable_error(exc: Exception) -> bool:
    """
    Check whether the retry executor should try again after ``exc``.

    Anything carrying a status in [400, 500) is final. Everything else,
    including unclassified failures, is treated as transient.
    """
    if isinstance(exc, WorkspaceError):
        return exc.is_retryable
    return not is_client_status(get_status_code(exc))


def error_for_status(
    status_code: int,
    message: str,
    cause: Exception | None = None,
    context: dict | None = None,
    request_id: str | None = None,
) -> WorkspaceError:
    """Build the typed error for a non-2xx service response."""
    if is_client_status(status_code):
        return ClientRequestError(
            message,
            cause=cause,
            context=context,
            status_code=status_code,
            request_id=request_id,
        )
    return TransientError(
        message,
        cause=cause,
        context=context,
        status_code=status_code,
        request_id=request_id,
    )


def wrap_exception(
    exc: Exception,
    default_class: type[WorkspaceError] = WorkspaceError,
    context: dict | None = None,
) -> WorkspaceError:
    """Wrap a foreign exception in the matching WorkspaceError subclass."""
    if isinstance(exc, WorkspaceError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    status = get_status_code(exc)
    message = str(exc) or type(exc).__name__
    context = dict(context or {})
    context.setdefault("error_type", type(exc).__name__)

    if status is not None:
        return error_for_status(status, message, cause=exc, context=context)
    if category == ErrorCategory.AUTH:
        return AuthenticationError(message, cause=exc, context=context)
    if category == ErrorCategory.TRANSIENT:
        return TransientError(message, cause=exc, context=context)
    if category == ErrorCategory.PERMANENT:
        return ClientRequestError(message, cause=exc, context=context)
    return default_class(message, cause=exc, context=context)


__all__ = [
    "WorkspaceError",
    "AuthenticationError",
    "TransientError",
    "ConnectionError",
    "ClientRequestError",
    "ConfigurationError",
    "AUTH_ERROR_MARKERS",
    "TRANSIENT_ERROR_MARKERS",
    "is_client_status",
    "get_status_code",
    "classify_http_status",
    "classify_exception",
    "is_retryable_error",
    "error_for_status",
    "wrap_exception",
]
