"""
Expiry-aware bearer token cache bound to one credential strategy.

One TokenCache exists per (tenant, scope). It hands out the cached token
while more than the expiry buffer (default 5 minutes) remains before expiry,
and otherwise reacquires through the strategy. Concurrent callers that miss
the cache share a single in-flight acquisition.

Tokens without a declared expiry are never served from the cache.

Example:
    >>> cache = TokenCache(strategy, scope=WORKSPACE_SCOPE, name="acme")
    >>> header = await cache.get_authorization_header()
    >>> # After a 401 from the service:
    >>> await cache.refresh_token()
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from synapse_core.auth.credentials import CredentialStrategy
from synapse_core.errors.exceptions import AuthenticationError
from synapse_core.logging.utilities import log_exception, log_with_context

logger = logging.getLogger(__name__)

# Token audiences
WORKSPACE_SCOPE = "https://dev.azuresynapse.net/.default"
SQL_SCOPE = "https://database.windows.net/.default"

DEFAULT_EXPIRY_BUFFER_SECONDS = 300


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _retrieve_exception(task: asyncio.Future) -> None:
    # Failures are logged inside the task; mark them retrieved even when
    # no waiter is left to await it.
    if not task.cancelled():
        task.exception()


@dataclass(frozen=True)
class CachedToken:
    """
    Token with its absolute expiry.

    Attributes:
        value: The access token string
        expires_at: UTC expiry, or None when the provider declared none
    """

    value: str
    expires_at: Optional[datetime]

    def seconds_until_expiry(self, now: Optional[datetime] = None) -> Optional[float]:
        if self.expires_at is None:
            return None
        return (self.expires_at - (now or _now())).total_seconds()

    def is_valid(self, buffer_seconds: float = DEFAULT_EXPIRY_BUFFER_SECONDS) -> bool:
        """
        True while more than ``buffer_seconds`` remain before expiry.

        A token without an expiry is never valid, so it is reacquired on
        every call rather than risk serving a stale one.
        """
        remaining = self.seconds_until_expiry()
        if remaining is None:
            return False
        return remaining > buffer_seconds


class TokenCache:
    """
    Cache of one bearer token for one (tenant, scope).

    Not thread-safe: relies on the single-threaded event loop for the
    check-then-acquire sequence, with one shared acquisition task.
    """

    def __init__(
        self,
        strategy: CredentialStrategy,
        scope: str = WORKSPACE_SCOPE,
        expiry_buffer_seconds: float = DEFAULT_EXPIRY_BUFFER_SECONDS,
        name: str = "",
    ):
        self._strategy = strategy
        self._scope = scope
        self._buffer = float(expiry_buffer_seconds)
        self._name = name
        self._cached: Optional[CachedToken] = None
        self._pending: Optional[asyncio.Future] = None

    @property
    def scope(self) -> str:
        return self._scope

    @property
    def strategy(self) -> CredentialStrategy:
        return self._strategy

    async def get_access_token(self) -> str:
        """
        Return a valid token, acquiring one if needed.

        Raises:
            AuthenticationError: The strategy could not produce a token
        """
        cached = self._cached
        if cached is not None and cached.is_valid(self._buffer):
            return cached.value

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._acquire())
            self._pending.add_done_callback(_retrieve_exception)
        token = await asyncio.shield(self._pending)
        return token.value

    async def get_authorization_header(self) -> str:
        return f"Bearer {await self.get_access_token()}"

    async def refresh_token(self) -> str:
        """Drop the cached token and acquire a new one."""
        self._cached = None
        return await self.get_access_token()

    def clear_cache(self) -> None:
        self._cached = None

    async def _acquire(self) -> CachedToken:
        start = time.perf_counter()
        try:
            acquired = await self._strategy.acquire(self._scope)
        except Exception as e:
            self._cached = None
            log_exception(
                logger,
                e,
                "Token acquisition failed",
                level=logging.WARNING,
                include_traceback=False,
                tenant=self._name,
                scope=self._scope,
                auth_mode=self._strategy.kind.value,
                outcome="failure",
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise AuthenticationError(
                f"Failed to acquire token for tenant '{self._name}' ({self._strategy.kind.value})",
                cause=e,
                context={"tenant": self._name, "scope": self._scope},
            ) from e
        finally:
            self._pending = None

        expires_at = None
        if acquired.expires_on:
            expires_at = datetime.fromtimestamp(acquired.expires_on, tz=timezone.utc)
        token = CachedToken(value=acquired.token, expires_at=expires_at)
        self._cached = token

        remaining = token.seconds_until_expiry()
        log_with_context(
            logger,
            logging.INFO,
            "Token acquired",
            tenant=self._name,
            scope=self._scope,
            auth_mode=self._strategy.kind.value,
            outcome="success",
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            expires_in_seconds=round(remaining, 1) if remaining is not None else None,
        )
        return token

    def get_token_info(self) -> dict[str, Any]:
        """Token state for diagnostics; never includes the token value."""
        cached = self._cached
        if cached is None:
            return {
                "has_token": False,
                "expires_on": None,
                "seconds_until_expiry": None,
                "is_valid": False,
            }
        remaining = cached.seconds_until_expiry()
        return {
            "has_token": True,
            "expires_on": cached.expires_at.isoformat() if cached.expires_at else None,
            "seconds_until_expiry": round(remaining, 1) if remaining is not None else None,
            "is_valid": cached.is_valid(self._buffer),
        }

    def time_until_expiry(self) -> Optional[timedelta]:
        """Time left before the cached token expires, for health checks."""
        cached = self._cached
        if cached is None or cached.expires_at is None:
            return None
        return cached.expires_at - _now()

    async def validate_credential(self) -> bool:
        """Check that the strategy can currently produce a token."""
        try:
            await self.get_access_token()
        except AuthenticationError:
            return False
        return True

    async def aclose(self) -> None:
        self._cached = None
        await self._strategy.close()


__all__ = [
    "TokenCache",
    "CachedToken",
    "WORKSPACE_SCOPE",
    "SQL_SCOPE",
    "DEFAULT_EXPIRY_BUFFER_SECONDS",
]
