"""
Error classification for SQL driver failures and user-facing hints.

Wraps ODBC driver exceptions into the typed WorkspaceError hierarchy using
the SQLSTATE class and, for Azure SQL transient faults, the native error
number. Also derives the human-readable hint attached to failure payloads.
"""

import re
from typing import Optional

from synapse_core.errors.exceptions import (
    AuthenticationError,
    ClientRequestError,
    ConnectionError,
    TransientError,
    WorkspaceError,
)
from synapse_core.types import ErrorCategory

# SQLSTATE class (first two characters) -> category
SQLSTATE_CLASSES = {
    "08": "connection",  # Connection exception
    "28": "login",  # Invalid authorization specification
    "42": "client",  # Syntax error or access rule violation
    "22": "client",  # Data exception
    "23": "client",  # Integrity constraint violation
    "07": "client",  # Dynamic SQL error (parameter count/type)
    "HY": "transient",  # Driver-level, includes HYT00/HYT01 timeouts
}

# Azure SQL / Synapse native error numbers known to be transient
TRANSIENT_SQL_ERRORS = {
    "40501",  # Service busy
    "40613",  # Database unavailable
    "49918",  # Request limit exceeded
    "10054",  # Connection forcibly closed
    "40197",  # Service error processing request
    "40540",  # Service encountered error
    "10928",  # Resource limit reached
    "10929",  # Resource governance
}

_NATIVE_ERROR_RE = re.compile(r"\((\d{3,6})\)\s*(?:\(SQL\w+\))?\s*$")


def extract_sqlstate(error: Exception) -> Optional[str]:
    """Return the SQLSTATE of a pyodbc-style error (``args[0]``), if present."""
    if error.args and isinstance(error.args[0], str):
        candidate = error.args[0].strip()
        if len(candidate) == 5 and candidate.isalnum():
            return candidate.upper()
    return None


def extract_native_error(error: Exception) -> Optional[str]:
    """Return the server error number the driver appends as ``(NNNN)``."""
    message = str(error.args[-1]) if error.args else str(error)
    match = _NATIVE_ERROR_RE.search(message)
    return match.group(1) if match else None


def classify_sqlstate(sqlstate: Optional[str], native_error: Optional[str] = None) -> str:
    """
    Classify an SQLSTATE into one of: connection, login, client, transient.

    Native Azure SQL transient error numbers turn a client-class SQLSTATE
    into a transient one, since the service reports some throttling faults
    under class 42.
    """
    if not sqlstate:
        return "transient"
    kind = SQLSTATE_CLASSES.get(sqlstate[:2], "transient")
    if kind == "client" and native_error in TRANSIENT_SQL_ERRORS:
        return "transient"
    return kind


class SqlErrorClassifier:
    """Maps ODBC driver exceptions onto the WorkspaceError hierarchy."""

    @staticmethod
    def classify_driver_error(
        error: Exception, context: Optional[dict] = None
    ) -> WorkspaceError:
        """
        Classify a driver error into the appropriate exception type.

        Args:
            error: Original exception raised by the driver
            context: Additional context (merged with {"service": "sql"})

        Returns:
            Classified WorkspaceError subclass
        """
        if isinstance(error, WorkspaceError):
            if context:
                error.context.update(context)
            return error

        sqlstate = extract_sqlstate(error)
        native_error = extract_native_error(error)
        ctx = {"service": "sql", "sqlstate": sqlstate}
        if native_error:
            ctx["native_error"] = native_error
        if context:
            ctx.update(context)

        kind = classify_sqlstate(sqlstate, native_error)
        message = str(error.args[-1]) if error.args else str(error)

        if kind == "connection":
            return ConnectionError(f"SQL connection failed: {message}", cause=error, context=ctx)
        if kind == "login":
            return ConnectionError(
                f"SQL login failed: {message}",
                cause=error,
                context=ctx,
                status_code=401,
            )
        if kind == "client":
            return ClientRequestError(f"SQL request rejected: {message}", cause=error, context=ctx)
        return TransientError(f"SQL error: {message}", cause=error, context=ctx)

    def classify_error(self, error: Exception):
        """ErrorClassifier protocol entry point."""
        return self.classify_driver_error(error).category


def classify_driver_error(error: Exception, context: Optional[dict] = None) -> WorkspaceError:
    """Module-level shortcut for ``SqlErrorClassifier.classify_driver_error``."""
    return SqlErrorClassifier.classify_driver_error(error, context)


# (markers, hint) pairs checked in order against the lowercased message
ERROR_HINTS = (
    (
        ("login failed", "authentication", "credential"),
        "Check the tenant's credentials and that the identity has access to the workspace.",
    ),
    (
        ("permission", "cannot open database", "denied"),
        "Verify the database name and that the identity has permission to query it.",
    ),
    (("syntax",), "Check the SQL statement for syntax errors."),
    (
        ("timeout", "timed out"),
        "The request timed out; narrow the query or raise REQUEST_TIMEOUT.",
    ),
    (
        ("connection",),
        "Check network connectivity to the workspace endpoint and that the SQL pool is online.",
    ),
)

DEFAULT_HINT = "Check workspace permissions and that the requested resource exists."


def get_error_hint(error: BaseException | str, category: Optional[ErrorCategory] = None) -> str:
    """
    Derive a diagnostic hint for an error.

    Auth-category failures always get the credentials hint; everything else
    is matched by substring against the message.
    """
    if category is None and isinstance(error, BaseException):
        category = getattr(error, "category", None)
    if category == ErrorCategory.AUTH or isinstance(error, AuthenticationError):
        return ERROR_HINTS[0][1]
    text = str(error).lower()
    for markers, hint in ERROR_HINTS:
        if any(marker in text for marker in markers):
            return hint
    return DEFAULT_HINT


__all__ = [
    "SQLSTATE_CLASSES",
    "TRANSIENT_SQL_ERRORS",
    "ERROR_HINTS",
    "DEFAULT_HINT",
    "SqlErrorClassifier",
    "classify_driver_error",
    "classify_sqlstate",
    "extract_sqlstate",
    "extract_native_error",
    "get_error_hint",
]
