"""Synapse workspace REST client (dev endpoint) with token refresh and retry."""

import asyncio
import logging
from typing import Any

import aiohttp

from synapse_core.auth.token_cache import TokenCache
from synapse_core.errors.exceptions import (
    ClientRequestError,
    TransientError,
    WorkspaceError,
    error_for_status,
)
from synapse_core.logging.context import get_log_context
from synapse_core.resilience.retry import RetryConfig, retry_operation
from synapse_core.utils.json_serializers import safe_json_parse

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2020-12-01"

ARTIFACT_KINDS = frozenset(
    {
        "pipelines",
        "notebooks",
        "datasets",
        "linkedservices",
        "triggers",
        "dataflows",
        "sqlScripts",
        "sparkJobDefinitions",
    }
)


def workspace_endpoint(workspace_name: str) -> str:
    return f"https://{workspace_name}.dev.azuresynapse.net"


def _service_error(body: Any) -> tuple[str | None, str | None]:
    """(code, message) from a Synapse error body, when present."""
    if not isinstance(body, dict):
        return None, None
    error = body.get("error", body)
    if not isinstance(error, dict):
        return None, None
    return error.get("code"), error.get("message")


class WorkspaceRestClient:
    """
    Async client for one tenant's workspace dev endpoint.

    Every call sends a bearer token from the tenant's workspace-scope token
    cache. A 401 refreshes the token and re-sends once; other failures go
    through retry_operation (4xx are final, everything else is retried).
    """

    def __init__(
        self,
        workspace_name: str,
        token_cache: TokenCache,
        api_version: str = DEFAULT_API_VERSION,
        timeout_seconds: int = 30,
        retry_config: RetryConfig | None = None,
        tenant: str = "",
        session: aiohttp.ClientSession | None = None,
    ):
        if not workspace_name:
            raise ClientRequestError("WorkspaceRestClient requires a workspace name")
        self.workspace_name = workspace_name
        self.base_url = workspace_endpoint(workspace_name)
        self.api_version = api_version
        self.timeout_seconds = timeout_seconds
        self.tenant = tenant
        self._token_cache = token_cache
        self._retry_config = retry_config or RetryConfig()
        self._session = session
        self._owns_session = session is None
        self._closed = False

    @classmethod
    def for_tenant(cls, registry, tenant: str | None = None, settings=None) -> "WorkspaceRestClient":
        """
        Build a client from a registered tenant.

        Raises:
            ConfigurationError: The tenant is unknown
        """
        config = registry.require_tenant(tenant)
        kwargs: dict[str, Any] = {}
        if settings is not None:
            kwargs = {
                "api_version": settings.api_version,
                "timeout_seconds": settings.request_timeout_seconds,
                "retry_config": RetryConfig(
                    max_attempts=settings.retry_max_attempts,
                    base_delay=settings.retry_base_delay_seconds,
                ),
            }
        return cls(
            config.workspace_name,
            registry.get_token_cache(config.name),
            tenant=config.name,
            **kwargs,
        )

    async def __aenter__(self) -> "WorkspaceRestClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._closed:
            raise RuntimeError("WorkspaceRestClient is closed, cannot create new session")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        self._closed = True
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
        self._session = None

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        session = await self._ensure_session()
        url = self._url(path)
        if params is None and not path.startswith(("http://", "https://")):
            params = {}
        if params is not None:
            params = {"api-version": self.api_version, **params}

        refreshed = False
        while True:
            headers = {"Authorization": await self._token_cache.get_authorization_header()}
            start = asyncio.get_running_loop().time()
            try:
                async with session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    duration_ms = round((asyncio.get_running_loop().time() - start) * 1000, 2)
                    request_id = response.headers.get("x-ms-request-id")
                    text = await response.text()
                    body = safe_json_parse(text, default=None)
            except asyncio.TimeoutError as e:
                raise TransientError(
                    f"Timeout after {self.timeout_seconds}s: {method} {path}",
                    cause=e,
                    context={"http_method": method, "http_url": url},
                ) from e
            except aiohttp.ClientError as e:
                raise TransientError(
                    f"Connection error: {method} {path}: {e}",
                    cause=e,
                    context={"http_method": method, "http_url": url},
                ) from e

            log_fields = {
                **{k: v for k, v in get_log_context().items() if v},
                "tenant": self.tenant,
                "workspace": self.workspace_name,
                "http_method": method,
                "http_url": url,
                "status_code": response.status,
                "duration_ms": duration_ms,
                "request_id": request_id,
            }

            if response.status == 401 and not refreshed:
                logger.info("Unauthorized response, refreshing token", extra=log_fields)
                await self._token_cache.refresh_token()
                refreshed = True
                continue

            if not 200 <= response.status < 300:
                code, message = _service_error(body)
                logger.warning("API request failed", extra={**log_fields, "error_code": code})
                raise error_for_status(
                    response.status,
                    f"{method} {path} failed ({response.status}): {message or text[:500] or 'no body'}",
                    context={"http_method": method, "http_url": url, "error_code": code},
                    request_id=request_id,
                )

            logger.debug("API request succeeded", extra=log_fields)
            return body if body is not None else {}

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        """Send one API call through the retry executor."""
        return await retry_operation(
            lambda: self._send(method, path, params=params, json_body=json_body),
            config=self._retry_config,
            operation_name=f"{method} {path}",
        )

    @staticmethod
    def _check_kind(kind: str) -> str:
        if kind not in ARTIFACT_KINDS:
            raise ClientRequestError(
                f"Unknown artifact kind: {kind!r}",
                context={"artifact_type": kind, "supported": sorted(ARTIFACT_KINDS)},
            )
        return kind

    async def list_artifacts(self, kind: str) -> list[dict[str, Any]]:
        """All artifacts of ``kind``, following nextLink pages."""
        path: str | None = self._check_kind(kind)
        items: list[dict[str, Any]] = []
        pages = 0
        while path:
            page = await self.request("GET", path)
            pages += 1
            items.extend(page.get("value", []))
            path = page.get("nextLink")
        logger.debug(
            "Listed artifacts",
            extra={"artifact_type": kind, "row_count": len(items), "page_count": pages},
        )
        return items

    async def get_artifact(self, kind: str, name: str) -> dict[str, Any]:
        return await self.request("GET", f"{self._check_kind(kind)}/{name}")

    async def create_or_update_artifact(
        self, kind: str, name: str, definition: dict[str, Any]
    ) -> dict[str, Any]:
        body = definition if "properties" in definition else {"properties": definition}
        return await self.request("PUT", f"{self._check_kind(kind)}/{name}", json_body=body)

    async def delete_artifact(self, kind: str, name: str) -> None:
        await self.request("DELETE", f"{self._check_kind(kind)}/{name}")

    async def run_pipeline(
        self, name: str, parameters: dict[str, Any] | None = None
    ) -> str:
        """Start a pipeline run and return its run id."""
        response = await self.request("POST", f"pipelines/{name}/createRun", json_body=parameters or {})
        run_id = response.get("runId")
        if not run_id:
            raise WorkspaceError(
                f"createRun for pipeline '{name}' returned no runId",
                context={"artifact_name": name},
            )
        logger.info(
            "Pipeline run started",
            extra={"tenant": self.tenant, "artifact_name": name, "run_id": run_id},
        )
        return run_id

    async def get_pipeline_run(self, run_id: str) -> dict[str, Any]:
        return await self.request("GET", f"pipelineruns/{run_id}")

    async def cancel_pipeline_run(self, run_id: str, is_recursive: bool = False) -> None:
        params = {"isRecursive": "true"} if is_recursive else None
        await self.request("POST", f"pipelineruns/{run_id}/cancel", params=params)
        logger.info("Pipeline run cancelled", extra={"tenant": self.tenant, "run_id": run_id})


__all__ = [
    "WorkspaceRestClient",
    "ARTIFACT_KINDS",
    "DEFAULT_API_VERSION",
    "workspace_endpoint",
]
