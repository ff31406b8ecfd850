"""
Authentication: credential strategies and per-tenant token caches.

Provides:
- CredentialStrategy and resolve_credential_strategy for the closed set of
  declared authentication types
- TokenCache for expiry-aware, coalesced token acquisition
"""

from synapse_core.auth.credentials import (
    AcquiredToken,
    CredentialStrategy,
    CredentialType,
    normalize_credential_type,
    resolve_credential_strategy,
)
from synapse_core.auth.token_cache import (
    DEFAULT_EXPIRY_BUFFER_SECONDS,
    SQL_SCOPE,
    WORKSPACE_SCOPE,
    CachedToken,
    TokenCache,
)

__all__ = [
    "AcquiredToken",
    "CredentialStrategy",
    "CredentialType",
    "normalize_credential_type",
    "resolve_credential_strategy",
    "CachedToken",
    "TokenCache",
    "WORKSPACE_SCOPE",
    "SQL_SCOPE",
    "DEFAULT_EXPIRY_BUFFER_SECONDS",
]
