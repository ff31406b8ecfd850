"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_tenant: ContextVar[str] = ContextVar("tenant", default="")
_operation: ContextVar[str] = ContextVar("operation", default="")
_request_id: ContextVar[str] = ContextVar("request_id", default="")


def set_log_context(
    tenant: Optional[str] = None,
    operation: Optional[str] = None,
    request_id: Optional[str] = None,
) -> None:
    if tenant is not None:
        _tenant.set(tenant)
    if operation is not None:
        _operation.set(operation)
    if request_id is not None:
        _request_id.set(request_id)


def get_log_context() -> Dict[str, str]:
    return {
        "tenant": _tenant.get(),
        "operation": _operation.get(),
        "request_id": _request_id.get(),
    }


def clear_log_context() -> None:
    _tenant.set("")
    _operation.set("")
    _request_id.set("")
