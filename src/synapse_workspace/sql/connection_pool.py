"""
Session pool keyed by (tenant, database, pool kind).

At most one open session exists per key. Concurrent get_connection calls for
a key that is not yet open share one in-flight creation, so the session
factory runs once no matter how many callers race. Sessions that report a
fatal error or close are evicted so the next request opens a fresh one.

Statement results are cached per (session key, statement fingerprint) in a
ResultCache; there is no automatic invalidation on writes, so callers pass
use_cache=False for statements that must observe fresh data.

Example:
    >>> pool = ConnectionPool(OdbcSessionFactory(), ResultCache(ttl_seconds=300))
    >>> session = await pool.get_connection(descriptor, "acme", "dw01", "dedicated", access_token=token)
    >>> rows = await pool.execute_query(session, "SELECT TOP 1 * FROM sales WHERE id = @id", {"id": 7})
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Protocol, runtime_checkable

from synapse_core.errors.classifiers import classify_driver_error
from synapse_core.errors.exceptions import ConnectionError, WorkspaceError
from synapse_core.logging.context_managers import OperationContext
from synapse_core.logging.utilities import log_with_context
from synapse_workspace.sql.connection_string import (
    ConnectionDescriptor,
    SessionParameters,
    parse_connection_string,
)
from synapse_workspace.sql.parameters import BoundParameter, bind_parameters, statement_fingerprint
from synapse_workspace.sql.result_cache import ResultCache
from synapse_workspace.tenants.models import PoolDescriptor, PoolKind, coerce_pool_kind

logger = logging.getLogger(__name__)


def _retrieve_exception(task: asyncio.Future) -> None:
    # Failures are logged inside the task; mark them retrieved even when
    # no waiter is left to await it.
    if not task.cancelled():
        task.exception()


@runtime_checkable
class SqlSession(Protocol):
    """An open connection to one SQL pool database."""

    @property
    def is_ready(self) -> bool: ...

    def execute(
        self, statement: str, parameters: Sequence[BoundParameter]
    ) -> AsyncIterator[dict[str, Any]]:
        """Run a statement, yielding result rows in arrival order."""
        ...

    async def close(self) -> None: ...

    def add_observer(
        self,
        on_error: Callable[[Exception], None] | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None: ...


SessionFactory = Callable[[SessionParameters], Awaitable[SqlSession]]


class SessionKey(NamedTuple):
    tenant: str
    database: str
    pool_kind: str

    def __str__(self) -> str:
        return f"{self.tenant}/{self.database}/{self.pool_kind}"


@dataclass(eq=False)
class PooledSession:
    """A session held by the pool, with its key and usage timestamps."""

    key: SessionKey
    session: SqlSession
    created_at: float = field(default_factory=time.monotonic)
    last_used_at: float = field(default_factory=time.monotonic)
    query_count: int = 0

    @property
    def is_ready(self) -> bool:
        return self.session.is_ready

    def touch(self) -> None:
        self.last_used_at = time.monotonic()
        self.query_count += 1


@dataclass
class ConnectionStats:
    active_connections: int
    cached_queries: int
    connections: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "activeConnections": self.active_connections,
            "cachedQueries": self.cached_queries,
            "connections": list(self.connections),
        }


def _as_connection_descriptor(
    descriptor: ConnectionDescriptor | PoolDescriptor | str,
) -> ConnectionDescriptor:
    if isinstance(descriptor, ConnectionDescriptor):
        return descriptor
    if isinstance(descriptor, PoolDescriptor):
        return parse_connection_string(descriptor.connection_string)
    return parse_connection_string(descriptor)


class ConnectionPool:
    """
    Per-key session pool with coalesced creation and a result cache.

    Not thread-safe: all calls must come from one event loop.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        result_cache: ResultCache | None = None,
        connect_timeout_seconds: int = 30,
        request_timeout_seconds: int = 30,
    ):
        self._factory = session_factory
        self._cache = result_cache if result_cache is not None else ResultCache()
        self._connect_timeout = connect_timeout_seconds
        self._request_timeout = request_timeout_seconds
        self._sessions: dict[SessionKey, PooledSession] = {}
        self._pending: dict[SessionKey, asyncio.Future] = {}

    @property
    def result_cache(self) -> ResultCache:
        return self._cache

    async def get_connection(
        self,
        descriptor: ConnectionDescriptor | PoolDescriptor | str,
        tenant: str,
        database: str | None,
        pool_kind: PoolKind | str,
        *,
        access_token: str | None = None,
    ) -> PooledSession:
        """
        Return the ready session for (tenant, database, pool_kind), opening
        one if needed.

        Raises:
            ConfigurationError: The descriptor cannot be turned into
                session parameters
            ClientRequestError: Unknown pool kind
            ConnectionError: The session could not be opened
        """
        parsed = _as_connection_descriptor(descriptor)
        kind = coerce_pool_kind(pool_kind).value
        key = SessionKey(tenant, database or parsed.database, kind)

        existing = self._sessions.get(key)
        if existing is not None:
            if existing.is_ready:
                return existing
            # Stale entry whose close/error observer never fired
            self._evict(key, existing)

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._open(key, parsed, access_token))
            pending.add_done_callback(_retrieve_exception)
            self._pending[key] = pending
        else:
            logger.debug("Joining in-flight session creation", extra={"session_key": str(key)})
        return await asyncio.shield(pending)

    async def _open(
        self,
        key: SessionKey,
        descriptor: ConnectionDescriptor,
        access_token: str | None,
    ) -> PooledSession:
        try:
            with OperationContext(
                logger,
                "open_session",
                level=logging.INFO,
                tenant=key.tenant,
                database=key.database,
                pool_kind=key.pool_kind,
                auth_mode=descriptor.auth_kind.value,
            ):
                params = SessionParameters.from_descriptor(
                    descriptor,
                    database=key.database,
                    access_token=access_token,
                    connect_timeout=self._connect_timeout,
                    request_timeout=self._request_timeout,
                )
                try:
                    session = await self._factory(params)
                except WorkspaceError:
                    raise
                except Exception as e:
                    raise ConnectionError(
                        f"Failed to open session for {key}: {e}",
                        cause=e,
                        context={"session_key": str(key)},
                    ) from e
        finally:
            self._pending.pop(key, None)

        pooled = PooledSession(key=key, session=session)
        session.add_observer(
            on_error=lambda error: self._on_session_error(pooled, error),
            on_close=lambda: self._evict(key, pooled),
        )
        self._sessions[key] = pooled
        return pooled

    def _on_session_error(self, pooled: PooledSession, error: Exception) -> None:
        log_with_context(
            logger,
            logging.WARNING,
            "Session reported an error, evicting",
            session_key=str(pooled.key),
            error_message=str(error)[:200],
        )
        self._evict(pooled.key, pooled)

    def _evict(self, key: SessionKey, pooled: PooledSession) -> None:
        if self._sessions.get(key) is pooled:
            del self._sessions[key]
            logger.debug("Evicted session", extra={"session_key": str(key)})

    async def execute_query(
        self,
        session: PooledSession,
        statement: str,
        parameters: Mapping[str, Any] | None = None,
        use_cache: bool = True,
    ) -> list[dict[str, Any]]:
        """
        Run ``statement`` on ``session`` and return its rows.

        With use_cache, an unexpired result for the same session key,
        statement text and parameters is returned without touching the
        session, and a fresh result is stored for later calls.

        Raises:
            ClientRequestError: Bad parameter name or statement rejected
            TransientError: The statement failed or timed out
            ConnectionError: The session died (it is evicted)
        """
        cache_key = f"{session.key}|{statement_fingerprint(statement, parameters)}"
        if use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug(
                    "Serving cached result",
                    extra={"session_key": str(session.key), "cache_hit": True, "row_count": len(cached)},
                )
                return cached

        bound = bind_parameters(parameters)
        with OperationContext(
            logger,
            "execute_query",
            tenant=session.key.tenant,
            database=session.key.database,
            pool_kind=session.key.pool_kind,
            cache_hit=False,
        ) as op:
            try:
                rows = [row async for row in session.session.execute(statement, bound)]
            except WorkspaceError as e:
                if isinstance(e, ConnectionError):
                    self._evict(session.key, session)
                raise
            except Exception as e:
                error = classify_driver_error(e, context={"session_key": str(session.key)})
                if isinstance(error, ConnectionError):
                    self._evict(session.key, session)
                raise error from e
            op.add_context(row_count=len(rows))

        session.touch()
        if use_cache:
            self._cache.set(cache_key, rows)
        return [dict(row) for row in rows]

    async def close_connection(
        self, tenant: str, database: str, pool_kind: PoolKind | str
    ) -> bool:
        """Close and remove one session; False when none was open."""
        key = SessionKey(tenant, database, coerce_pool_kind(pool_kind).value)
        pooled = self._sessions.pop(key, None)
        if pooled is None:
            return False
        await pooled.session.close()
        logger.info("Closed session", extra={"session_key": str(key)})
        return True

    async def close_all(self) -> None:
        """
        Close every session and flush the result cache.

        Close failures are logged and do not stop the remaining closes.
        """
        pooled = list(self._sessions.values())
        self._sessions.clear()
        results = await asyncio.gather(
            *(item.session.close() for item in pooled), return_exceptions=True
        )
        for item, result in zip(pooled, results):
            if isinstance(result, Exception):
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Error closing session",
                    session_key=str(item.key),
                    error_message=str(result)[:200],
                )
        flushed = self._cache.flush()
        await self._cache.stop_sweeper()
        logger.info(
            "Closed all sessions",
            extra={"active_connections": 0, "closed": len(pooled), "cached_queries": flushed},
        )

    def clear_cache(self) -> int:
        return self._cache.flush()

    def get_connection_stats(self) -> ConnectionStats:
        return ConnectionStats(
            active_connections=len(self._sessions),
            cached_queries=len(self._cache),
            connections=[str(key) for key in self._sessions],
        )


__all__ = [
    "SqlSession",
    "SessionFactory",
    "SessionKey",
    "PooledSession",
    "ConnectionStats",
    "ConnectionPool",
]
