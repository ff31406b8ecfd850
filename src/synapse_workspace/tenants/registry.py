"""
Tenant registry: tenant name to workspace coordinates, pools and credentials.

The registry is an explicit object (no module-level singleton). It is loaded
once at process start from the tenants document and the environment, and is
mutable afterwards through add/remove/set-default. Each registered tenant has
its credential strategy resolved at registration time; token caches are
created lazily per (tenant, scope) and share that strategy.

Loading precedence:
1. Tenants from the structured document (SYNAPSE_CONFIG_PATH)
2. An implicit "default" tenant built from environment variables, only when
   the document did not define a tenant named "default"
3. SYNAPSE_DEFAULT_TENANT overrides the document's defaultTenant; a default
   naming an unregistered tenant is logged and left unset
"""

import asyncio
import json
import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from synapse_core.auth.credentials import (
    CredentialStrategy,
    resolve_credential_strategy,
)
from synapse_core.auth.token_cache import (
    DEFAULT_EXPIRY_BUFFER_SECONDS,
    WORKSPACE_SCOPE,
    TokenCache,
)
from synapse_core.errors.exceptions import ConfigurationError, WorkspaceError
from synapse_workspace.config import DEFAULT_TENANTS_PATH
from synapse_workspace.tenants.models import (
    CredentialDeclaration,
    PoolDescriptor,
    PoolKind,
    TenantConfig,
    TenantsDocument,
)

logger = logging.getLogger(__name__)

DEFAULT_TENANT_NAME = "default"

StrategyResolver = Callable[[CredentialDeclaration], CredentialStrategy]


def resolve_declared_strategy(declaration: CredentialDeclaration) -> CredentialStrategy:
    """Default resolver: build the azure-identity backed strategy."""
    return resolve_credential_strategy(
        declaration.type,
        tenant_id=declaration.tenant_id,
        client_id=declaration.client_id,
        client_secret=declaration.client_secret,
    )


def read_tenants_document(path: Path) -> TenantsDocument:
    """Read a JSON or YAML tenants document; a missing file is an empty one.

    Raises:
        ConfigurationError: The file is unreadable or does not match the schema
    """
    if not path.exists():
        return TenantsDocument()
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return TenantsDocument.model_validate(raw)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        raise ConfigurationError(
            f"Invalid tenants document: {path}",
            cause=e,
            context={"config_path": str(path)},
        ) from e


def tenant_from_environment(environ: Mapping[str, str] | None = None) -> dict[str, Any] | None:
    """Build the implicit "default" tenant record from environment variables.

    Returns None when no workspace name is set. The record is validated by
    ``TenantRegistry.add_tenant`` like any other.
    """
    env = os.environ if environ is None else environ
    workspace = env.get("AZURE_SYNAPSE_WORKSPACE") or env.get("SYNAPSE_WORKSPACE_NAME")
    if not workspace:
        return None

    pools: list[dict[str, str]] = []
    dedicated_pool = env.get("SYNAPSE_DEDICATED_POOL")
    dedicated_connection = env.get("SYNAPSE_DEDICATED_CONNECTION")
    if dedicated_pool and dedicated_connection:
        pools.append(
            {"name": dedicated_pool, "type": "dedicated", "connectionString": dedicated_connection}
        )
    serverless_connection = env.get("SYNAPSE_SERVERLESS_CONNECTION")
    if serverless_connection:
        pools.append(
            {
                "name": env.get("SYNAPSE_SERVERLESS_ENDPOINT") or "Built-in",
                "type": "serverless",
                "connectionString": serverless_connection,
            }
        )

    return {
        "name": DEFAULT_TENANT_NAME,
        "subscriptionId": env.get("AZURE_SUBSCRIPTION_ID", ""),
        "resourceGroup": env.get("AZURE_RESOURCE_GROUP", ""),
        "workspaceName": workspace,
        "sqlPools": pools,
        "credentials": {
            "type": env.get("AZURE_AUTH_METHOD") or "default",
            "tenantId": env.get("AZURE_TENANT_ID") or None,
            "clientId": env.get("AZURE_CLIENT_ID") or None,
            "clientSecret": env.get("AZURE_CLIENT_SECRET") or None,
        },
    }


class TenantRegistry:
    """
    Mapping of tenant name to TenantConfig plus its credential strategy.

    Example:
        >>> registry = TenantRegistry.load(Path("config/tenants.json"))
        >>> descriptor = registry.get_connection_descriptor("acme", "dedicated")
        >>> token = await registry.get_token_cache("acme").get_access_token()
    """

    def __init__(
        self,
        strategy_resolver: StrategyResolver = resolve_declared_strategy,
        expiry_buffer_seconds: float = DEFAULT_EXPIRY_BUFFER_SECONDS,
        config_path: Path | None = None,
    ):
        self._resolve_strategy = strategy_resolver
        self._expiry_buffer = expiry_buffer_seconds
        self._config_path = config_path
        self._tenants: dict[str, TenantConfig] = {}
        self._strategies: dict[str, CredentialStrategy] = {}
        self._token_caches: dict[tuple[str, str], TokenCache] = {}
        self._retired: list[CredentialStrategy] = []
        self._closing: set[asyncio.Task] = set()
        self._default_tenant: str | None = None

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> "TenantRegistry":
        """Build a registry from the tenants document and environment.

        Args:
            config_path: Tenants document (default: SYNAPSE_CONFIG_PATH or
                config/tenants.json)
            environ: Environment mapping (default: os.environ)
            **kwargs: Passed to the constructor (strategy_resolver, ...)

        Raises:
            ConfigurationError: Malformed document or invalid tenant
        """
        env = os.environ if environ is None else environ
        path = Path(config_path or env.get("SYNAPSE_CONFIG_PATH") or DEFAULT_TENANTS_PATH)
        registry = cls(config_path=path, **kwargs)

        document = read_tenants_document(path)
        for tenant in document.tenants:
            registry.add_tenant(tenant)

        if DEFAULT_TENANT_NAME not in registry._tenants:
            env_tenant = tenant_from_environment(env)
            if env_tenant is not None:
                registry.add_tenant(env_tenant)

        default_name = env.get("SYNAPSE_DEFAULT_TENANT") or document.default_tenant
        if default_name in registry._tenants:
            registry.set_default_tenant(default_name)
        elif default_name:
            logger.warning(
                "Default tenant is not registered; no default set",
                extra={"tenant": default_name, "config_path": str(path)},
            )

        logger.info(
            "Tenant registry loaded",
            extra={
                "config_path": str(path),
                "tenant_count": len(registry._tenants),
                "tenant": registry.default_tenant or "",
            },
        )
        return registry

    # =========================================================================
    # Registration
    # =========================================================================

    def add_tenant(self, config: TenantConfig | Mapping[str, Any]) -> TenantConfig:
        """Register a tenant, replacing any tenant with the same name.

        Raises:
            ConfigurationError: The record is invalid or its credential
                declaration cannot be resolved
        """
        try:
            tenant = config if isinstance(config, TenantConfig) else TenantConfig.model_validate(config)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid tenant configuration: {e}", cause=e) from e

        try:
            strategy = self._resolve_strategy(tenant.credentials)
        except WorkspaceError as e:
            raise ConfigurationError(
                f"Cannot resolve credentials for tenant '{tenant.name}': {e.message}",
                cause=e,
                context={"tenant": tenant.name},
            ) from e

        replaced = tenant.name in self._tenants
        if replaced:
            self._retire(tenant.name)

        self._tenants[tenant.name] = tenant
        self._strategies[tenant.name] = strategy

        duplicates = tenant.duplicate_pool_kinds()
        if duplicates:
            logger.warning(
                "Tenant declares more than one pool of the same kind; the first is used",
                extra={"tenant": tenant.name, "pool_kind": ",".join(duplicates)},
            )

        logger.info(
            "Tenant updated" if replaced else "Tenant registered",
            extra={
                "tenant": tenant.name,
                "workspace": tenant.workspace_name,
                "auth_mode": strategy.kind.value,
            },
        )
        return tenant

    def remove_tenant(self, name: str) -> bool:
        """Remove a tenant; clears the default if it pointed at it."""
        if name not in self._tenants:
            return False
        self._retire(name)
        del self._tenants[name]
        if self._default_tenant == name:
            self._default_tenant = None
        logger.info("Tenant removed", extra={"tenant": name})
        return True

    def _retire(self, name: str) -> None:
        strategy = self._strategies.pop(name, None)
        for key in [key for key in self._token_caches if key[0] == name]:
            del self._token_caches[key]
        if strategy is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet (startup loading); aclose releases it
            self._retired.append(strategy)
            return
        task = loop.create_task(self._close_strategy(strategy, name))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    @staticmethod
    async def _close_strategy(strategy: CredentialStrategy, name: str) -> None:
        try:
            await strategy.close()
        except Exception as e:
            logger.warning(
                "Error closing replaced credential",
                extra={"tenant": name, "error_message": str(e)[:200]},
            )

    def set_default_tenant(self, name: str) -> None:
        if name not in self._tenants:
            raise ConfigurationError(
                f"Tenant '{name}' not found",
                context={"tenant": name, "known": sorted(self._tenants)},
            )
        self._default_tenant = name

    @property
    def default_tenant(self) -> str | None:
        return self._default_tenant

    # =========================================================================
    # Lookup
    # =========================================================================

    def _resolve_name(self, name: str | None) -> str | None:
        if name:
            return name
        if self._default_tenant:
            return self._default_tenant
        if DEFAULT_TENANT_NAME in self._tenants:
            return DEFAULT_TENANT_NAME
        return None

    def get_tenant(self, name: str | None = None) -> TenantConfig | None:
        resolved = self._resolve_name(name)
        return self._tenants.get(resolved) if resolved else None

    def require_tenant(self, name: str | None = None) -> TenantConfig:
        """Like get_tenant, but an absent tenant is a ConfigurationError."""
        tenant = self.get_tenant(name)
        if tenant is None:
            if name:
                raise ConfigurationError(f"Tenant '{name}' not found", context={"tenant": name})
            raise ConfigurationError("No tenant specified and no default tenant configured")
        return tenant

    def get_connection_descriptor(
        self,
        name: str | None,
        pool_kind: PoolKind | str,
    ) -> PoolDescriptor | None:
        """First pool descriptor of ``pool_kind`` for the tenant, or None."""
        tenant = self.get_tenant(name)
        if tenant is None:
            return None
        return tenant.pool_descriptor(pool_kind)

    def list_tenants(self) -> list[TenantConfig]:
        return list(self._tenants.values())

    def get_strategy(self, name: str | None = None) -> CredentialStrategy:
        return self._strategies[self.require_tenant(name).name]

    def get_token_cache(self, name: str | None = None, scope: str = WORKSPACE_SCOPE) -> TokenCache:
        """Token cache for (tenant, scope), created on first use."""
        tenant = self.require_tenant(name)
        key = (tenant.name, scope)
        cache = self._token_caches.get(key)
        if cache is None:
            cache = TokenCache(
                self._strategies[tenant.name],
                scope=scope,
                expiry_buffer_seconds=self._expiry_buffer,
                name=tenant.name,
            )
            self._token_caches[key] = cache
        return cache

    # =========================================================================
    # Persistence and shutdown
    # =========================================================================

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {}
        if self._default_tenant:
            document["defaultTenant"] = self._default_tenant
        document["tenants"] = [tenant.to_document() for tenant in self._tenants.values()]
        return document

    def save_configuration(self, path: Path | None = None) -> Path:
        """Write the tenants document (YAML for .yaml/.yml, JSON otherwise)."""
        target = Path(path or self._config_path or DEFAULT_TENANTS_PATH)
        target.parent.mkdir(parents=True, exist_ok=True)
        document = self.to_document()
        with open(target, "w", encoding="utf-8") as f:
            if target.suffix.lower() in (".yaml", ".yml"):
                yaml.safe_dump(document, f, sort_keys=False)
            else:
                json.dump(document, f, indent=2)
        logger.info(
            "Tenant configuration saved",
            extra={"config_path": str(target), "tenant_count": len(self._tenants)},
        )
        return target

    async def aclose(self) -> None:
        """Release every credential strategy, including replaced ones."""
        strategies = list(self._strategies.values()) + self._retired
        self._retired = []
        self._token_caches.clear()
        if self._closing:
            await asyncio.gather(*self._closing)
        results = await asyncio.gather(
            *(strategy.close() for strategy in strategies), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning(
                    "Error closing credential",
                    extra={"error_message": str(result)[:200]},
                )


__all__ = [
    "TenantRegistry",
    "DEFAULT_TENANT_NAME",
    "read_tenants_document",
    "tenant_from_environment",
    "resolve_declared_strategy",
]
