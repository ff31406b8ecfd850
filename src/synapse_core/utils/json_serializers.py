"""Shared JSON serialization utilities for type-safe JSON encoding."""

import json
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any


def _serialize_known_type(obj: Any) -> tuple[bool, Any]:
    """Try to serialize by known type. Returns (handled, result)."""
    if isinstance(obj, (datetime, date, time)):
        return True, obj.isoformat()
    if isinstance(obj, Decimal):
        return True, float(obj)
    if isinstance(obj, Path):
        return True, str(obj)
    if isinstance(obj, (bytes, bytearray)):
        return True, obj.hex()
    return False, None


def json_serializer(obj: Any) -> Any:
    """
    Type-safe JSON serializer for query rows and parameters.

    Keeps native JSON types where possible instead of stringifying everything:
    - datetime/date/time → ISO 8601 string
    - Decimal → float
    - Path → string
    - bytes → hex string
    - Enums → value
    - Everything else → string (fallback)

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation with proper types
    """
    handled, result = _serialize_known_type(obj)
    if handled:
        return result
    if hasattr(obj, "value"):
        return obj.value
    return str(obj)


def stable_dumps(obj: Any) -> str:
    """Deterministic JSON: sorted keys, compact separators."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=json_serializer)


def safe_json_parse(text: str | bytes | None, default: Any = None) -> Any:
    """Parse JSON, returning ``default`` for empty or malformed input."""
    if not text:
        return default
    try:
        return json.loads(text)
    except (ValueError, TypeError):
        return default


__all__ = ["json_serializer", "stable_dumps", "safe_json_parse"]
