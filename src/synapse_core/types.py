"""
Core types and protocols used across modules.

Base enums and protocol definitions shared by the error, retry and
authentication layers so that each of them can classify failures and
exchange tokens without importing one another.
"""

from enum import Enum
from typing import Protocol


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures worth retrying with backoff
                   (e.g., network resets, 5xx responses, statement timeouts)
        AUTH: Credential acquisition failed or a token was rejected
        PERMANENT: Client-side failures that will not succeed on retry
                   (e.g., 4xx responses, bad SQL, unknown tenant)
        UNKNOWN: Unclassified errors, treated as transient by the executor
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class ErrorClassifier(Protocol):
    """
    Protocol for error classification implementations.

    Backends (ODBC driver, HTTP client) implement this to map their own
    failures onto the shared categories.
    """

    def classify_error(self, error: Exception) -> ErrorCategory:
        """
        Classify an exception into an error category.

        Args:
            error: Exception to classify

        Returns:
            ErrorCategory indicating how to handle this error
        """
        ...


class TokenProvider(Protocol):
    """
    Protocol for bearer token providers.

    Implemented by ``synapse_core.auth.TokenCache``; consumers such as the
    REST client depend on this protocol only.
    """

    async def get_access_token(self) -> str:
        """Return a token valid for at least the provider's expiry buffer."""
        ...

    async def get_authorization_header(self) -> str:
        """Return ``"Bearer <token>"`` for an Authorization header."""
        ...

    async def refresh_token(self) -> str:
        """Drop any cached token and acquire a new one."""
        ...


__all__ = ["ErrorCategory", "ErrorClassifier", "TokenProvider"]
