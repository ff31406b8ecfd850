"""Helpers that attach structured fields to log records."""

import logging
from typing import Any

from synapse_core.utils.text import mask_secret, truncate_string

MAX_LOGGED_ERROR_LENGTH = 500

# Attributes every LogRecord already owns; passing them in ``extra`` raises KeyError.
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


def _structured_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if key not in _RECORD_ATTRIBUTES}


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Emit ``msg`` with keyword arguments as structured fields.

    ``exc_info`` is forwarded to the logger; keys that collide with
    LogRecord attributes are dropped.

    Example:
        log_with_context(
            logger, logging.INFO, "Session opened",
            tenant="acme", database="dw01", pool_kind="dedicated",
        )
    """
    exc_info = kwargs.pop("exc_info", None)
    logger.log(level, msg, exc_info=exc_info, extra=_structured_fields(kwargs))


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log a failure together with what the error hierarchy knows about it.

    WorkspaceError subclasses contribute ``error_category``, ``status_code``
    and ``request_id`` unless the caller already supplied them. The message
    is masked for secrets and cut to MAX_LOGGED_ERROR_LENGTH characters.
    """
    category = getattr(exc, "category", None)
    if category is not None and kwargs.get("error_category") is None:
        kwargs["error_category"] = getattr(category, "value", str(category))
    for attr in ("status_code", "request_id"):
        if kwargs.get(attr) is None and getattr(exc, attr, None) is not None:
            kwargs[attr] = getattr(exc, attr)

    kwargs["error_message"] = truncate_string(mask_secret(str(exc)), MAX_LOGGED_ERROR_LENGTH)
    kwargs.setdefault("error_type", type(exc).__name__)

    extra = _structured_fields(kwargs)
    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=extra)
    else:
        logger.log(level, msg, extra=extra)
