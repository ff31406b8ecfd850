"""
SQL session layer.

Components:
- connection_string: Parse pool connection strings into session parameters
- parameters: Typed parameter binding and statement fingerprints
- result_cache: TTL cache of statement results
- connection_pool: Per-(tenant, database, pool kind) session pool
- odbc: aioodbc session backend
"""

from synapse_workspace.sql.connection_pool import (
    ConnectionPool,
    ConnectionStats,
    PooledSession,
    SessionFactory,
    SessionKey,
    SqlSession,
)
from synapse_workspace.sql.connection_string import (
    AuthKind,
    ConnectionDescriptor,
    SessionParameters,
    parse_connection_string,
)
from synapse_workspace.sql.parameters import (
    BoundParameter,
    ParameterType,
    bind_parameters,
    statement_fingerprint,
)
from synapse_workspace.sql.result_cache import ResultCache

__all__ = [
    "AuthKind",
    "BoundParameter",
    "ConnectionDescriptor",
    "ConnectionPool",
    "ConnectionStats",
    "ParameterType",
    "PooledSession",
    "ResultCache",
    "SessionFactory",
    "SessionKey",
    "SessionParameters",
    "SqlSession",
    "bind_parameters",
    "parse_connection_string",
    "statement_fingerprint",
]
