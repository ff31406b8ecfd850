"""Tenant configuration models and registry."""

from synapse_workspace.tenants.models import (
    CredentialDeclaration,
    PoolDescriptor,
    PoolKind,
    TenantConfig,
    TenantsDocument,
)
from synapse_workspace.tenants.registry import (
    DEFAULT_TENANT_NAME,
    TenantRegistry,
    read_tenants_document,
    tenant_from_environment,
)

__all__ = [
    "CredentialDeclaration",
    "PoolDescriptor",
    "PoolKind",
    "TenantConfig",
    "TenantsDocument",
    "TenantRegistry",
    "DEFAULT_TENANT_NAME",
    "read_tenants_document",
    "tenant_from_environment",
]
