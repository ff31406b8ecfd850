"""
Tenant configuration schemas.

Pydantic models for tenant records as persisted in the tenants document
(``{"defaultTenant": ..., "tenants": [...]}``). Field names are camelCase on
disk and snake_case in Python; both are accepted on input.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from synapse_core.auth.credentials import AUTH_METHOD_ALIASES, CredentialType
from synapse_core.errors.exceptions import ClientRequestError


class PoolKind(str, Enum):
    """Analytical execution mode a statement targets."""

    DEDICATED = "dedicated"
    SERVERLESS = "serverless"


def coerce_pool_kind(pool_kind: PoolKind | str) -> PoolKind:
    """PoolKind for ``pool_kind``; unknown kinds are a ClientRequestError."""
    try:
        return PoolKind(pool_kind)
    except ValueError as e:
        raise ClientRequestError(
            f"Unknown pool kind: {pool_kind!r} (expected 'dedicated' or 'serverless')",
            cause=e,
            context={"pool_kind": str(pool_kind)},
        ) from e


class PoolDescriptor(BaseModel):
    """SQL pool belonging to one tenant.

    Attributes:
        name: Pool name (dedicated pool name, or "Built-in" for serverless)
        type: Pool kind
        connection_string: ADO/ODBC style connection string carrying the
            server, database and authentication hints
    """

    name: str = Field(..., description="SQL pool name", min_length=1)
    type: PoolKind = Field(..., description="Pool kind (dedicated or serverless)")
    connection_string: str = Field(
        ...,
        alias="connectionString",
        description="Connection string: server, database coordinates and auth hints",
        min_length=1,
    )

    model_config = {"populate_by_name": True, "frozen": True}


class CredentialDeclaration(BaseModel):
    """How a tenant authenticates. Secrets are optional for non-secret types."""

    type: CredentialType = Field(
        default=CredentialType.DEFAULT,
        description="service_principal, managed_identity, azure_cli or default",
    )
    tenant_id: str | None = Field(default=None, alias="tenantId")
    client_id: str | None = Field(default=None, alias="clientId")
    client_secret: str | None = Field(default=None, alias="clientSecret", repr=False)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        """Accept AZURE_AUTH_METHOD spellings such as client_credentials."""
        if isinstance(v, str):
            return AUTH_METHOD_ALIASES.get(v.strip().lower(), v)
        return v

    model_config = {"populate_by_name": True, "frozen": True}


class TenantConfig(BaseModel):
    """Workspace coordinates, SQL pools and credentials of one tenant.

    Example:
        >>> tenant = TenantConfig(
        ...     name="acme",
        ...     subscriptionId="00000000-0000-0000-0000-000000000000",
        ...     resourceGroup="rg-analytics",
        ...     workspaceName="acme-synapse",
        ...     sqlPools=[{
        ...         "name": "dw01",
        ...         "type": "dedicated",
        ...         "connectionString": "Server=tcp:acme-synapse.sql.azuresynapse.net,1433;Database=dw01",
        ...     }],
        ...     credentials={"type": "managed_identity"},
        ... )
        >>> tenant.pool_descriptor("dedicated").name
        'dw01'
    """

    name: str = Field(..., description="Unique tenant key", min_length=1)
    subscription_id: str = Field(default="", alias="subscriptionId")
    resource_group: str = Field(default="", alias="resourceGroup")
    workspace_name: str = Field(..., alias="workspaceName", min_length=1)
    sql_pools: list[PoolDescriptor] = Field(default_factory=list, alias="sqlPools")
    credentials: CredentialDeclaration = Field(default_factory=CredentialDeclaration)
    region: str | None = Field(default=None)
    tags: dict[str, str] | None = Field(default=None)

    @field_validator("name", "workspace_name")
    @classmethod
    def validate_non_empty_strings(cls, v: str, info) -> str:
        """Ensure identifiers are not empty or whitespace-only."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty or whitespace")
        return v.strip()

    def pool_descriptor(self, pool_kind: PoolKind | str) -> PoolDescriptor | None:
        """First pool whose kind matches, or None (also for unknown kinds)."""
        try:
            kind = PoolKind(pool_kind)
        except ValueError:
            return None
        for pool in self.sql_pools:
            if pool.type == kind:
                return pool
        return None

    def duplicate_pool_kinds(self) -> list[str]:
        """Pool kinds declared more than once (only the first is ever used)."""
        seen: set[PoolKind] = set()
        duplicates: list[str] = []
        for pool in self.sql_pools:
            if pool.type in seen and pool.type.value not in duplicates:
                duplicates.append(pool.type.value)
            seen.add(pool.type)
        return duplicates

    def to_document(self) -> dict[str, Any]:
        """camelCase dict for the persisted tenants document."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    model_config = {"populate_by_name": True, "frozen": True}


class TenantsDocument(BaseModel):
    """Persisted tenants document."""

    default_tenant: str | None = Field(default=None, alias="defaultTenant")
    tenants: list[TenantConfig] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


__all__ = [
    "PoolKind",
    "coerce_pool_kind",
    "PoolDescriptor",
    "CredentialDeclaration",
    "TenantConfig",
    "TenantsDocument",
]
