"""String helpers for log and payload output."""

import re

# key=value pairs in connection strings whose value must never be logged
_SECRET_PAIR_RE = re.compile(
    r"(?i)\b(password|pwd|client_?secret|access_?token|accountkey|sharedaccesskey)\s*=\s*([^;\s&]+)"
)
_BEARER_RE = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9\-_.~+/]+=*")


def truncate_string(value: str, max_length: int = 200, suffix: str = "...") -> str:
    """Cut ``value`` to ``max_length`` characters including ``suffix``."""
    if len(value) <= max_length:
        return value
    return value[: max(max_length - len(suffix), 0)] + suffix


def mask_secret(value: str | None) -> str:
    """Mask passwords, client secrets and bearer tokens inside free text."""
    if not value:
        return ""
    masked = _SECRET_PAIR_RE.sub(lambda m: f"{m.group(1)}=***", value)
    return _BEARER_RE.sub("Bearer ***", masked)


def mask_credential(value: str | None, visible: int = 4) -> str:
    """Show only the first characters of an identifier such as a client id."""
    if not value:
        return "<not set>"
    if len(value) <= visible:
        return "***"
    return value[:visible] + "***"


__all__ = ["truncate_string", "mask_secret", "mask_credential"]
