"""
Multi-tenant Synapse workspace session layer.

Modules:
- config: Settings from YAML with environment overrides
- tenants: Tenant registry and its persisted document
- sql: Connection pool, result cache and the ODBC session backend
- rest: Workspace REST client
- operations: SqlExecutor facade tying registry, tokens and pool together
- cli: Diagnostic command line
"""

from synapse_workspace.config import WorkspaceSettings
from synapse_workspace.operations import QueryResult, SqlExecutor
from synapse_workspace.tenants import TenantRegistry

__version__ = "0.1.0"

__all__ = [
    "QueryResult",
    "SqlExecutor",
    "TenantRegistry",
    "WorkspaceSettings",
]
