"""
SQL execution facade.

SqlExecutor ties the tenant registry, token caches and connection pool
together: it resolves the tenant's pool descriptor, obtains a SQL-scope
token for token-authenticated pools, and runs the statement through the
retry executor.

Example:
    >>> async with SqlExecutor.from_environment() as executor:
    ...     result = await executor.execute("SELECT TOP 10 * FROM sales", database="dw01", pool_kind="dedicated")
    ...     print(result.row_count)
"""

import logging
import os
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from synapse_core.auth.token_cache import SQL_SCOPE, TokenCache
from synapse_core.errors.exceptions import (
    AuthenticationError,
    ClientRequestError,
    ConfigurationError,
    WorkspaceError,
)
from synapse_core.errors.payload import create_error_result, create_success_result
from synapse_core.logging.context_managers import LogContext
from synapse_core.logging.utilities import log_exception
from synapse_core.resilience.retry import RetryConfig, retry_operation
from synapse_workspace.config import WorkspaceSettings
from synapse_workspace.sql.connection_pool import ConnectionPool, ConnectionStats, SessionFactory
from synapse_workspace.sql.connection_string import ConnectionDescriptor, parse_connection_string
from synapse_workspace.sql.odbc import OdbcSessionFactory
from synapse_workspace.sql.result_cache import ResultCache
from synapse_workspace.tenants.models import PoolKind, coerce_pool_kind
from synapse_workspace.tenants.registry import TenantRegistry

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Rows returned by one statement plus where they came from."""

    rows: list[dict[str, Any]]
    tenant: str
    workspace: str
    database: str
    pool_kind: str
    execution_time_ms: float = 0.0
    executed_at: float = field(default_factory=time.time)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def metadata(self) -> dict[str, Any]:
        return {
            "workspace": self.workspace,
            "database": self.database,
            "poolType": self.pool_kind,
            "executionTime": self.execution_time_ms,
            "tenant": self.tenant,
        }


class SqlExecutor:
    """Run statements against a tenant's SQL pools."""

    def __init__(
        self,
        registry: TenantRegistry,
        pool: ConnectionPool | None = None,
        settings: WorkspaceSettings | None = None,
        session_factory: SessionFactory | None = None,
    ):
        self.settings = settings or WorkspaceSettings()
        self._registry = registry
        if pool is None:
            pool = ConnectionPool(
                session_factory or OdbcSessionFactory(self.settings.odbc_driver),
                ResultCache(
                    ttl_seconds=self.settings.cache_ttl_seconds,
                    check_period_seconds=self.settings.cache_check_period_seconds,
                    max_entries=self.settings.cache_max_entries,
                ),
                connect_timeout_seconds=self.settings.connect_timeout_seconds,
                request_timeout_seconds=self.settings.request_timeout_seconds,
            )
        self._pool = pool
        self._retry_config = RetryConfig(
            max_attempts=self.settings.retry_max_attempts,
            base_delay=self.settings.retry_base_delay_seconds,
        )

    @classmethod
    def from_environment(
        cls,
        environ: Mapping[str, str] | None = None,
        settings: WorkspaceSettings | None = None,
        **kwargs: Any,
    ) -> "SqlExecutor":
        """Load settings and the tenant registry from files and environment."""
        env = os.environ if environ is None else environ
        settings = settings or WorkspaceSettings.load(environ=env)
        registry = TenantRegistry.load(
            settings.tenants_path,
            env,
            expiry_buffer_seconds=settings.token_expiry_buffer_seconds,
        )
        return cls(registry, settings=settings, **kwargs)

    @property
    def registry(self) -> TenantRegistry:
        return self._registry

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    async def __aenter__(self) -> "SqlExecutor":
        self._pool.result_cache.start_sweeper()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def execute(
        self,
        statement: str,
        database: str | None = None,
        pool_kind: PoolKind | str = PoolKind.SERVERLESS,
        tenant: str | None = None,
        parameters: Mapping[str, Any] | None = None,
        use_cache: bool = True,
    ) -> QueryResult:
        """
        Run ``statement`` on the tenant's pool of ``pool_kind``.

        Raises:
            ClientRequestError: Empty statement or unknown pool kind
            ConfigurationError: Unknown tenant, or no pool of that kind
            ConnectionError / TransientError: After retries are exhausted
        """
        if not statement or not statement.strip():
            raise ClientRequestError("Statement must not be empty")
        kind = coerce_pool_kind(pool_kind)
        config = self._registry.require_tenant(tenant)
        pool_descriptor = self._registry.get_connection_descriptor(config.name, kind)
        if pool_descriptor is None:
            raise ConfigurationError(
                f"Tenant '{config.name}' has no {kind.value} SQL pool configured",
                context={"tenant": config.name, "pool_kind": kind.value},
            )

        descriptor = parse_connection_string(pool_descriptor.connection_string)
        target_database = database or descriptor.database
        token_cache = (
            self._registry.get_token_cache(config.name, SQL_SCOPE) if descriptor.requires_token else None
        )

        with LogContext(tenant=config.name, operation="execute_sql"):
            start = time.perf_counter()

            async def attempt() -> list[dict[str, Any]]:
                return await self._run(
                    descriptor, config.name, target_database, kind,
                    statement, parameters, use_cache, token_cache,
                )

            try:
                rows = await retry_operation(
                    attempt, config=self._retry_config, operation_name="execute_sql"
                )
            except WorkspaceError as e:
                if token_cache is None or isinstance(e, AuthenticationError) or not e.should_refresh_auth:
                    raise
                logger.info(
                    "SQL login rejected, refreshing token and retrying once",
                    extra={"tenant": config.name, "database": target_database, "pool_kind": kind.value},
                )
                await self._pool.close_connection(config.name, target_database or "", kind)
                await token_cache.refresh_token()
                rows = await attempt()

        return QueryResult(
            rows=rows,
            tenant=config.name,
            workspace=config.workspace_name,
            database=target_database or "",
            pool_kind=kind.value,
            execution_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )

    async def _run(
        self,
        descriptor: ConnectionDescriptor,
        tenant: str,
        database: str | None,
        kind: PoolKind,
        statement: str,
        parameters: Mapping[str, Any] | None,
        use_cache: bool,
        token_cache: TokenCache | None,
    ) -> list[dict[str, Any]]:
        access_token = await token_cache.get_access_token() if token_cache is not None else None
        session = await self._pool.get_connection(
            descriptor, tenant, database, kind, access_token=access_token
        )
        return await self._pool.execute_query(session, statement, parameters, use_cache=use_cache)

    async def execute_payload(
        self,
        statement: str,
        database: str | None = None,
        pool_kind: PoolKind | str = PoolKind.SERVERLESS,
        tenant: str | None = None,
        parameters: Mapping[str, Any] | None = None,
        use_cache: bool = True,
    ) -> dict[str, Any]:
        """Like execute, but returns a success or failure payload dict."""
        try:
            result = await self.execute(
                statement, database, pool_kind, tenant, parameters, use_cache
            )
        except Exception as e:
            log_exception(
                logger,
                e,
                "SQL execution failed",
                level=logging.WARNING,
                include_traceback=not isinstance(e, WorkspaceError),
                tenant=tenant or self._registry.default_tenant or "",
                database=database,
                pool_kind=str(getattr(pool_kind, "value", pool_kind)),
            )
            return create_error_result(
                e,
                metadata={
                    "tenant": tenant or self._registry.default_tenant,
                    "database": database,
                    "poolType": str(getattr(pool_kind, "value", pool_kind)),
                },
            )
        return create_success_result(result.rows, result.metadata)

    async def execute_optional(
        self,
        statement: str,
        database: str | None = None,
        pool_kind: PoolKind | str = PoolKind.SERVERLESS,
        tenant: str | None = None,
        parameters: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Rows of a non-essential query; any workspace failure yields []."""
        try:
            result = await self.execute(statement, database, pool_kind, tenant, parameters)
        except WorkspaceError as e:
            log_exception(
                logger,
                e,
                "Optional query failed, returning empty result",
                level=logging.WARNING,
                include_traceback=False,
                tenant=tenant or "",
                database=database,
            )
            return []
        return result.rows

    def get_connection_stats(self) -> ConnectionStats:
        return self._pool.get_connection_stats()

    def clear_cache(self) -> int:
        return self._pool.clear_cache()

    async def aclose(self) -> None:
        """Close every session and release every credential."""
        await self._pool.close_all()
        await self._registry.aclose()


__all__ = ["SqlExecutor", "QueryResult"]
