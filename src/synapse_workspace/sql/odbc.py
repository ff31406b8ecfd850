"""
ODBC session backend built on aioodbc.

Opens one connection per session with the Microsoft ODBC driver. Token
authentication passes the access token through the driver's
SQL_COPT_SS_ACCESS_TOKEN pre-connect attribute; the connection string then
carries no credentials. Parameterised statements run through
sp_executesql with typed declarations.
"""

import asyncio
import logging
import struct
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

from synapse_core.errors.classifiers import classify_driver_error
from synapse_core.errors.exceptions import ClientRequestError, ConnectionError, TransientError
from synapse_workspace.sql.connection_string import AuthKind, SessionParameters
from synapse_workspace.sql.parameters import BoundParameter

logger = logging.getLogger(__name__)

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

# msodbcsql pre-connect attribute carrying an access token
SQL_COPT_SS_ACCESS_TOKEN = 1256

FETCH_BATCH_SIZE = 500


def pack_access_token(token: str) -> bytes:
    """Length-prefixed UTF-16-LE token as the driver expects it."""
    token_bytes = token.encode("utf-16-le")
    return struct.pack(f"<I{len(token_bytes)}s", len(token_bytes), token_bytes)


def _odbc_value(value: str) -> str:
    if any(ch in value for ch in ";{}=") or value != value.strip():
        return "{" + value.replace("}", "}}") + "}"
    return value


def build_odbc_connection_string(params: SessionParameters, driver: str = DEFAULT_ODBC_DRIVER) -> str:
    """ODBC connection string for ``params`` (no secrets for token auth)."""
    parts = [
        f"Driver={{{driver}}}",
        f"Server=tcp:{params.server},{params.port}",
        f"Database={_odbc_value(params.database)}",
        f"Encrypt={'yes' if params.encrypt else 'no'}",
        f"TrustServerCertificate={'yes' if params.trust_server_certificate else 'no'}",
        f"Connection Timeout={params.connect_timeout}",
    ]
    if params.auth_kind == AuthKind.AAD_PASSWORD:
        parts.append("Authentication=ActiveDirectoryPassword")
    if params.auth_kind in (AuthKind.SQL_PASSWORD, AuthKind.AAD_PASSWORD):
        parts.append(f"UID={_odbc_value(params.user or '')}")
        parts.append(f"PWD={_odbc_value(params.password or '')}")
    return ";".join(parts) + ";"


def build_executesql(statement: str, parameters: Sequence[BoundParameter]) -> tuple[str, list[Any]]:
    """
    Wrap a parameterised statement in sp_executesql.

    Returns the SQL to send and its positional ODBC arguments.
    """
    if not parameters:
        return statement, []
    declarations = ", ".join(p.declaration for p in parameters)
    assignments = ", ".join(f"@{p.name} = ?" for p in parameters)
    sql = f"EXEC sp_executesql ?, ?, {assignments}"
    return sql, [statement, declarations, *(p.value for p in parameters)]


class OdbcSession:
    """One open aioodbc connection."""

    def __init__(self, connection: Any, params: SessionParameters):
        self._connection = connection
        self._params = params
        self._closed = False
        self._abandoned = False
        self._close_task: asyncio.Future | None = None
        self._error_observers: list[Callable[[Exception], None]] = []
        self._close_observers: list[Callable[[], None]] = []

    @property
    def is_ready(self) -> bool:
        return not (self._closed or self._abandoned or self._connection.closed)

    def add_observer(
        self,
        on_error: Callable[[Exception], None] | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        if on_error is not None:
            self._error_observers.append(on_error)
        if on_close is not None:
            self._close_observers.append(on_close)

    async def execute(
        self, statement: str, parameters: Sequence[BoundParameter]
    ) -> AsyncIterator[dict[str, Any]]:
        import pyodbc

        sql, args = build_executesql(statement, parameters)
        context = {"server": self._params.server, "database": self._params.database}
        try:
            async with self._connection.cursor() as cursor:
                await asyncio.wait_for(
                    cursor.execute(sql, *args), timeout=self._params.request_timeout
                )
                if cursor.description is None:
                    return
                columns = [column[0] for column in cursor.description]
                while True:
                    batch = await asyncio.wait_for(
                        cursor.fetchmany(FETCH_BATCH_SIZE), timeout=self._params.request_timeout
                    )
                    if not batch:
                        break
                    for row in batch:
                        yield dict(zip(columns, row))
        except asyncio.TimeoutError as e:
            error = TransientError(
                f"Statement timed out after {self._params.request_timeout}s",
                cause=e,
                context=context,
            )
            self._abandon(error)
            raise error from e
        except pyodbc.Error as e:
            error = classify_driver_error(e, context=context)
            if isinstance(error, ConnectionError):
                self._notify_error(error)
            raise error from e

    def _notify_error(self, error: Exception) -> None:
        for observer in list(self._error_observers):
            observer(error)

    def _abandon(self, error: Exception) -> None:
        """
        Retire a connection whose statement outlived its timeout.

        The driver is still running the statement, so the connection is
        never reused: observers hear about it at once and the close runs
        in the background instead of blocking the caller.
        """
        self._abandoned = True
        self._notify_error(error)
        self._close_task = asyncio.ensure_future(self._close_quietly())

    async def _close_quietly(self) -> None:
        try:
            await self.close()
        except Exception as e:
            logger.warning(
                "Error closing abandoned ODBC connection",
                extra={"server": self._params.server, "error_message": str(e)[:200]},
            )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._connection.close()
        finally:
            for observer in list(self._close_observers):
                observer()


class OdbcSessionFactory:
    """Session factory opening OdbcSession instances."""

    def __init__(self, driver: str = DEFAULT_ODBC_DRIVER):
        self.driver = driver

    async def __call__(self, params: SessionParameters) -> OdbcSession:
        # Driver modules load libodbc, so import them only when a session is opened
        import aioodbc
        import pyodbc

        dsn = build_odbc_connection_string(params, self.driver)
        connect_kwargs: dict[str, Any] = {}
        if params.auth_kind == AuthKind.ACCESS_TOKEN:
            connect_kwargs["attrs_before"] = {
                SQL_COPT_SS_ACCESS_TOKEN: pack_access_token(params.access_token or "")
            }
        context = {"server": params.server, "database": params.database}
        try:
            connection = await asyncio.wait_for(
                aioodbc.connect(dsn=dsn, autocommit=True, timeout=params.connect_timeout, **connect_kwargs),
                timeout=params.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectionError(
                f"Connecting to {params.server} timed out after {params.connect_timeout}s",
                cause=e,
                context=context,
            ) from e
        except pyodbc.Error as e:
            error = classify_driver_error(e, context=context)
            if isinstance(error, (ConnectionError, ClientRequestError)):
                raise error from e
            raise ConnectionError(
                f"SQL connection failed: {e}",
                cause=e,
                context=context,
                status_code=error.status_code,
            ) from e
        logger.debug("Opened ODBC connection", extra=context)
        return OdbcSession(connection, params)


__all__ = [
    "OdbcSession",
    "OdbcSessionFactory",
    "DEFAULT_ODBC_DRIVER",
    "SQL_COPT_SS_ACCESS_TOKEN",
    "build_executesql",
    "build_odbc_connection_string",
    "pack_access_token",
]
