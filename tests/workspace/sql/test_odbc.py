"""Tests for the aioodbc session backend."""

import asyncio
import struct
import sys
import types
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from synapse_core.errors.exceptions import ClientRequestError, ConnectionError, TransientError
from synapse_workspace.sql.connection_pool import ConnectionPool
from synapse_workspace.sql.connection_string import AuthKind, SessionParameters
from synapse_workspace.sql.odbc import (
    SQL_COPT_SS_ACCESS_TOKEN,
    OdbcSession,
    OdbcSessionFactory,
    build_executesql,
    build_odbc_connection_string,
    pack_access_token,
)
from synapse_workspace.sql.parameters import bind_parameters
from synapse_workspace.sql.result_cache import ResultCache


class DriverError(Exception):
    """Stand-in for pyodbc.Error: args = (sqlstate, message)."""


@pytest.fixture
def fake_pyodbc():
    module = types.ModuleType("pyodbc")
    module.Error = DriverError
    with patch.dict(sys.modules, {"pyodbc": module}):
        yield module


@pytest.fixture
def fake_aioodbc(fake_pyodbc):
    module = types.ModuleType("aioodbc")
    module.connect = AsyncMock()
    with patch.dict(sys.modules, {"aioodbc": module}):
        yield module


def _params(**overrides):
    values = {
        "server": "acme-synapse.sql.azuresynapse.net",
        "port": 1433,
        "database": "dw01",
        "auth_kind": AuthKind.ACCESS_TOKEN,
        "access_token": "tok",
        "connect_timeout": 15,
        "request_timeout": 30,
    }
    values.update(overrides)
    return SessionParameters(**values)


class FakeCursor:
    def __init__(self, description=None, batches=(), execute_error=None):
        self.description = description
        self.execute = AsyncMock(side_effect=execute_error)
        self.fetchmany = AsyncMock(side_effect=list(batches) + [[]])

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.closed = False
        self.close = AsyncMock(side_effect=self._close)

    async def _close(self):
        self.closed = True

    def cursor(self):
        return self._cursor


async def _collect(session, statement, parameters=None):
    return [row async for row in session.execute(statement, bind_parameters(parameters))]


# =============================================================================
# Pure helpers
# =============================================================================


class TestPackAccessToken:

    def test_length_prefixed_utf16(self):
        packed = pack_access_token("abc")

        assert struct.unpack("<I", packed[:4])[0] == 6
        assert packed[4:] == "abc".encode("utf-16-le")


class TestBuildExecutesql:

    def test_without_parameters_sends_statement_as_is(self):
        assert build_executesql("SELECT 1", []) == ("SELECT 1", [])

    def test_wraps_parameters_in_sp_executesql(self):
        sql, args = build_executesql(
            "SELECT * FROM sales WHERE id = @id AND region = @region",
            bind_parameters({"id": 7, "region": "west"}),
        )

        assert sql == "EXEC sp_executesql ?, ?, @id = ?, @region = ?"
        assert args == [
            "SELECT * FROM sales WHERE id = @id AND region = @region",
            "@id BIGINT, @region NVARCHAR(MAX)",
            7,
            "west",
        ]


class TestBuildOdbcConnectionString:

    def test_token_auth_carries_no_credentials(self):
        dsn = build_odbc_connection_string(_params())

        assert dsn.startswith("Driver={ODBC Driver 18 for SQL Server};")
        assert "Server=tcp:acme-synapse.sql.azuresynapse.net,1433;" in dsn
        assert "Database=dw01;" in dsn
        assert "Encrypt=yes;" in dsn
        assert "Connection Timeout=15;" in dsn
        assert "UID=" not in dsn
        assert "tok" not in dsn

    def test_sql_password(self):
        dsn = build_odbc_connection_string(
            _params(auth_kind=AuthKind.SQL_PASSWORD, user="svc", password="p;w", access_token=None)
        )

        assert "UID=svc;" in dsn
        assert "PWD={p;w};" in dsn
        assert "Authentication=" not in dsn

    def test_aad_password(self):
        dsn = build_odbc_connection_string(
            _params(auth_kind=AuthKind.AAD_PASSWORD, user="u@acme.com", password="pw", access_token=None),
            driver="ODBC Driver 17 for SQL Server",
        )

        assert "Driver={ODBC Driver 17 for SQL Server}" in dsn
        assert "Authentication=ActiveDirectoryPassword;" in dsn
        assert "UID=u@acme.com;" in dsn


# =============================================================================
# OdbcSession
# =============================================================================


class TestOdbcSession:

    @pytest.mark.asyncio
    async def test_yields_rows_as_dicts(self, fake_pyodbc):
        cursor = FakeCursor(
            description=[("id",), ("region",)],
            batches=[[(1, "west"), (2, "east")], [(3, "north")]],
        )
        session = OdbcSession(FakeConnection(cursor), _params())

        rows = await _collect(session, "SELECT * FROM sales WHERE id > @id", {"id": 0})

        assert rows == [
            {"id": 1, "region": "west"},
            {"id": 2, "region": "east"},
            {"id": 3, "region": "north"},
        ]
        cursor.execute.assert_awaited_once_with(
            "EXEC sp_executesql ?, ?, @id = ?", "SELECT * FROM sales WHERE id > @id", "@id BIGINT", 0
        )

    @pytest.mark.asyncio
    async def test_statement_without_result_set(self, fake_pyodbc):
        cursor = FakeCursor(description=None)
        session = OdbcSession(FakeConnection(cursor), _params())

        assert await _collect(session, "UPDATE sales SET x = 1") == []
        cursor.fetchmany.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connection_failure_notifies_observers(self, fake_pyodbc):
        cursor = FakeCursor(execute_error=DriverError("08S01", "Communication link failure"))
        session = OdbcSession(FakeConnection(cursor), _params())
        errors = []
        session.add_observer(on_error=errors.append)

        with pytest.raises(ConnectionError):
            await _collect(session, "SELECT 1")

        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_syntax_error_does_not_notify(self, fake_pyodbc):
        cursor = FakeCursor(execute_error=DriverError("42000", "Incorrect syntax near 'FORM'."))
        session = OdbcSession(FakeConnection(cursor), _params())
        errors = []
        session.add_observer(on_error=errors.append)

        with pytest.raises(ClientRequestError):
            await _collect(session, "SELECT * FORM sales")

        assert errors == []

    @pytest.mark.asyncio
    async def test_statement_timeout_is_transient(self, fake_pyodbc):
        async def hang(*args):
            await asyncio.sleep(10)

        cursor = FakeCursor(description=[("id",)])
        cursor.execute = AsyncMock(side_effect=hang)
        session = OdbcSession(FakeConnection(cursor), _params(request_timeout=0.01))

        with pytest.raises(TransientError, match="timed out"):
            await _collect(session, "WAITFOR DELAY '00:01'")

    @pytest.mark.asyncio
    async def test_statement_timeout_retires_connection(self, fake_pyodbc):
        async def hang(*args):
            await asyncio.sleep(10)

        cursor = FakeCursor(description=[("id",)])
        cursor.execute = AsyncMock(side_effect=hang)
        connection = FakeConnection(cursor)
        session = OdbcSession(connection, _params(request_timeout=0.01))
        errors, closed = [], []
        session.add_observer(on_error=errors.append, on_close=lambda: closed.append(True))

        with pytest.raises(TransientError):
            await _collect(session, "WAITFOR DELAY '00:01'")

        assert session.is_ready is False
        assert len(errors) == 1
        await session._close_task
        connection.close.assert_awaited_once()
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_background_close_failure_is_logged(self, fake_pyodbc):
        async def hang(*args):
            await asyncio.sleep(10)

        cursor = FakeCursor(description=[("id",)])
        cursor.execute = AsyncMock(side_effect=hang)
        connection = FakeConnection(cursor)
        connection.close = AsyncMock(side_effect=DriverError("HY000", "busy"))
        session = OdbcSession(connection, _params(request_timeout=0.01))

        with pytest.raises(TransientError):
            await _collect(session, "WAITFOR DELAY '00:01'")

        await session._close_task
        assert session._close_task.exception() is None

    @pytest.mark.asyncio
    async def test_close_notifies_once(self):
        connection = FakeConnection(FakeCursor())
        session = OdbcSession(connection, _params())
        closed = []
        session.add_observer(on_close=lambda: closed.append(True))

        assert session.is_ready is True
        await session.close()
        await session.close()

        assert session.is_ready is False
        assert closed == [True]
        connection.close.assert_awaited_once()


# =============================================================================
# OdbcSessionFactory
# =============================================================================


class TestOdbcSessionFactory:

    @pytest.mark.asyncio
    async def test_token_auth_passes_attrs_before(self, fake_aioodbc):
        fake_aioodbc.connect.return_value = FakeConnection(FakeCursor())

        session = await OdbcSessionFactory()(_params())

        assert isinstance(session, OdbcSession)
        kwargs = fake_aioodbc.connect.call_args.kwargs
        assert kwargs["autocommit"] is True
        assert kwargs["attrs_before"] == {SQL_COPT_SS_ACCESS_TOKEN: pack_access_token("tok")}
        assert "tok" not in kwargs["dsn"]

    @pytest.mark.asyncio
    async def test_password_auth_has_no_attrs_before(self, fake_aioodbc):
        fake_aioodbc.connect.return_value = FakeConnection(FakeCursor())

        await OdbcSessionFactory()(
            _params(auth_kind=AuthKind.SQL_PASSWORD, user="svc", password="pw", access_token=None)
        )

        assert "attrs_before" not in fake_aioodbc.connect.call_args.kwargs

    @pytest.mark.asyncio
    async def test_login_failure_is_401_connection_error(self, fake_aioodbc):
        fake_aioodbc.connect.side_effect = DriverError("28000", "Login failed for user '<token-identified principal>'.")

        with pytest.raises(ConnectionError) as exc_info:
            await OdbcSessionFactory()(_params())

        assert exc_info.value.status_code == 401
        assert exc_info.value.should_refresh_auth is True

    @pytest.mark.asyncio
    async def test_other_driver_failure_is_connection_error(self, fake_aioodbc):
        fake_aioodbc.connect.side_effect = DriverError("HY000", "driver not loaded")

        with pytest.raises(ConnectionError, match="SQL connection failed"):
            await OdbcSessionFactory()(_params())

    @pytest.mark.asyncio
    async def test_connect_timeout(self, fake_aioodbc):
        async def hang(**kwargs):
            await asyncio.sleep(10)

        fake_aioodbc.connect.side_effect = hang

        with pytest.raises(ConnectionError, match="timed out"):
            await OdbcSessionFactory()(_params(connect_timeout=0.01))


# =============================================================================
# Pooled ODBC sessions
# =============================================================================


class TestPooledOdbcSession:

    @pytest.mark.asyncio
    async def test_timed_out_session_is_not_reused(self, fake_pyodbc):
        async def hang(*args):
            await asyncio.sleep(10)

        connections = []

        async def factory(params):
            cursor = FakeCursor(description=[("id",)], batches=[[(1,)]])
            if not connections:
                cursor.execute = AsyncMock(side_effect=hang)
            connection = FakeConnection(cursor)
            connections.append(connection)
            return OdbcSession(connection, params)

        pool = ConnectionPool(factory, ResultCache(ttl_seconds=0), request_timeout_seconds=0.01)
        descriptor = "Server=acme-synapse.sql.azuresynapse.net;Database=dw01;Authentication=ActiveDirectoryDefault"

        first = await pool.get_connection(descriptor, "acme", "dw01", "dedicated", access_token="tok")
        with pytest.raises(TransientError):
            await pool.execute_query(first, "WAITFOR DELAY '00:01'")

        assert pool.get_connection_stats().active_connections == 0

        second = await pool.get_connection(descriptor, "acme", "dw01", "dedicated", access_token="tok")
        assert second is not first
        assert await pool.execute_query(second, "SELECT 1 AS id") == [{"id": 1}]
        assert len(connections) == 2
