"""
Structured result payloads returned to the agent-facing layer.

Failures are converted into a JSON-safe dict carrying a diagnostic hint
rather than raised across the transport boundary.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from synapse_core.errors.classifiers import get_error_hint
from synapse_core.errors.exceptions import (
    ClientRequestError,
    WorkspaceError,
    classify_exception,
)
from synapse_core.utils.text import mask_secret, truncate_string

MAX_ERROR_LENGTH = 1000


def extract_error_message(error: BaseException) -> str:
    """Return the most specific message available for ``error``."""
    if isinstance(error, WorkspaceError):
        message = error.message
        if error.cause is not None and str(error.cause) not in message:
            message = f"{message} | Caused by: {error.cause}"
        return message
    return str(error) or type(error).__name__


def create_error_result(
    error: BaseException,
    metadata: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build the failure payload for ``error``.

    The message is masked for secrets and truncated; the hint is derived from
    the unmasked text so that it still matches on driver wording.
    """
    raw_message = extract_error_message(error)
    result: dict[str, Any] = {
        "success": False,
        "error": truncate_string(mask_secret(raw_message), MAX_ERROR_LENGTH),
        "hint": get_error_hint(raw_message, getattr(error, "category", None)),
        "errorCategory": classify_exception(error).value
        if isinstance(error, Exception)
        else "unknown",
    }
    if isinstance(error, WorkspaceError):
        if error.status_code is not None:
            result["statusCode"] = error.status_code
        if error.request_id:
            result["requestId"] = error.request_id
    result["metadata"] = dict(metadata or {})
    return result


def create_success_result(
    data: Any,
    metadata: Mapping[str, Any] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build the success payload; list data also reports ``rowCount``."""
    result: dict[str, Any] = {"success": True}
    if isinstance(data, list):
        result["rowCount"] = len(data)
    result["data"] = data
    result.update(extra)
    result["metadata"] = dict(metadata or {})
    return result


def validate_required_parameters(params: Mapping[str, Any], required: Iterable[str]) -> None:
    """Raise ClientRequestError naming every missing or empty required parameter."""
    missing = [name for name in required if params.get(name) in (None, "")]
    if missing:
        raise ClientRequestError(
            f"Missing required parameters: {', '.join(missing)}",
            context={"missing": missing},
        )


__all__ = [
    "create_error_result",
    "create_success_result",
    "extract_error_message",
    "validate_required_parameters",
]
