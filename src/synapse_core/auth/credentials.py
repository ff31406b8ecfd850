"""
Credential strategies for Azure AD token acquisition.

A tenant declares one authentication type; the resolver turns it into a
CredentialStrategy exposing a single ``acquire(scope)`` capability. The set of
strategies is closed:

    - service_principal: fixed client secret (ClientSecretCredential)
    - managed_identity: platform-assigned identity (ManagedIdentityCredential)
    - azure_cli: delegated to the signed-in Azure CLI user (AzureCliCredential)
    - default: chained fallback; the declared secret first when complete, then
      DefaultAzureCredential (environment, workload identity, managed identity,
      CLI, ...)

All strategies wrap the async credentials from ``azure.identity.aio`` so that
acquisition suspends the event loop instead of blocking it.

Example:
    >>> strategy = resolve_credential_strategy(
    ...     "service_principal",
    ...     tenant_id="...",
    ...     client_id="...",
    ...     client_secret="...",
    ... )
    >>> token = await strategy.acquire("https://dev.azuresynapse.net/.default")
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from azure.identity.aio import (
    AzureCliCredential,
    ChainedTokenCredential,
    ClientSecretCredential,
    DefaultAzureCredential,
    ManagedIdentityCredential,
)

from synapse_core.errors.exceptions import AuthenticationError
from synapse_core.utils.text import mask_credential

logger = logging.getLogger(__name__)


class CredentialType(str, Enum):
    """Declared authentication type of a tenant."""

    SERVICE_PRINCIPAL = "service_principal"
    MANAGED_IDENTITY = "managed_identity"
    AZURE_CLI = "azure_cli"
    DEFAULT = "default"


# AZURE_AUTH_METHOD values accepted from the environment
AUTH_METHOD_ALIASES = {
    "client_credentials": CredentialType.SERVICE_PRINCIPAL,
    "service_principal": CredentialType.SERVICE_PRINCIPAL,
    "managed_identity": CredentialType.MANAGED_IDENTITY,
    "azure_cli": CredentialType.AZURE_CLI,
    "cli": CredentialType.AZURE_CLI,
    "default": CredentialType.DEFAULT,
}


@dataclass(frozen=True)
class AcquiredToken:
    """
    Token returned by a strategy.

    Attributes:
        token: Bearer token value
        expires_on: Expiry as POSIX seconds, or None when the provider
            did not declare one
    """

    token: str
    expires_on: Optional[int] = None


class CredentialStrategy:
    """
    Token-producing capability bound to one tenant.

    Wraps an async azure-identity credential (anything exposing
    ``async get_token(*scopes)``). Created once at tenant registration and
    shared by reference; never mutated afterwards.
    """

    __slots__ = ("_kind", "_credential", "_description")

    def __init__(self, kind: CredentialType, credential: Any, description: str = ""):
        self._kind = CredentialType(kind)
        self._credential = credential
        self._description = description or self._kind.value

    @property
    def kind(self) -> CredentialType:
        return self._kind

    @property
    def description(self) -> str:
        return self._description

    async def acquire(self, scope: str) -> AcquiredToken:
        """
        Acquire a token for ``scope``.

        Raises whatever the underlying credential raises; the token cache
        is responsible for wrapping failures in AuthenticationError.
        """
        access_token = await self._credential.get_token(scope)
        expires_on = getattr(access_token, "expires_on", None)
        return AcquiredToken(token=access_token.token, expires_on=expires_on or None)

    async def close(self) -> None:
        """Release transport resources held by the credential."""
        close = getattr(self._credential, "close", None)
        if close is not None:
            await close()

    def __repr__(self) -> str:
        return f"CredentialStrategy(kind={self._kind.value!r}, {self._description})"


def normalize_credential_type(value: str | CredentialType | None) -> CredentialType:
    """Map a declared type or AZURE_AUTH_METHOD alias onto CredentialType."""
    if value is None or value == "":
        return CredentialType.DEFAULT
    if isinstance(value, CredentialType):
        return value
    try:
        return AUTH_METHOD_ALIASES[str(value).strip().lower()]
    except KeyError:
        raise AuthenticationError(
            f"Unsupported credential type: {value!r}",
            context={"supported": sorted(AUTH_METHOD_ALIASES)},
        ) from None


def resolve_credential_strategy(
    credential_type: str | CredentialType | None,
    tenant_id: Optional[str] = None,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
) -> CredentialStrategy:
    """
    Build the strategy for a tenant's credential declaration.

    Args:
        credential_type: Declared type (or AZURE_AUTH_METHOD alias)
        tenant_id: Azure AD tenant (directory) id
        client_id: Application id, or user-assigned identity id
        client_secret: Application secret

    Returns:
        CredentialStrategy ready to acquire tokens

    Raises:
        AuthenticationError: Unknown type, or service principal declared
            without tenant id, client id and secret
    """
    kind = normalize_credential_type(credential_type)
    has_secret = all([tenant_id, client_id, client_secret])

    if kind == CredentialType.SERVICE_PRINCIPAL:
        if not has_secret:
            missing = [
                name
                for name, value in (
                    ("tenantId", tenant_id),
                    ("clientId", client_id),
                    ("clientSecret", client_secret),
                )
                if not value
            ]
            raise AuthenticationError(
                "Service principal credentials require tenantId, clientId and clientSecret",
                context={"missing": missing},
            )
        credential = ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
        )
        description = f"client_id={mask_credential(client_id)}"

    elif kind == CredentialType.MANAGED_IDENTITY:
        if client_id:
            credential = ManagedIdentityCredential(client_id=client_id)
            description = f"user_assigned={mask_credential(client_id)}"
        else:
            credential = ManagedIdentityCredential()
            description = "system_assigned"

    elif kind == CredentialType.AZURE_CLI:
        credential = AzureCliCredential(tenant_id=tenant_id) if tenant_id else AzureCliCredential()
        description = "azure_cli"

    else:
        chain = []
        if has_secret:
            chain.append(
                ClientSecretCredential(
                    tenant_id=tenant_id,
                    client_id=client_id,
                    client_secret=client_secret,
                )
            )
        chain.append(DefaultAzureCredential())
        credential = ChainedTokenCredential(*chain)
        description = "secret+default" if has_secret else "default"

    logger.debug(
        "Resolved credential strategy",
        extra={"auth_mode": kind.value},
    )
    return CredentialStrategy(kind, credential, description)


__all__ = [
    "CredentialType",
    "AUTH_METHOD_ALIASES",
    "AcquiredToken",
    "CredentialStrategy",
    "normalize_credential_type",
    "resolve_credential_strategy",
]
