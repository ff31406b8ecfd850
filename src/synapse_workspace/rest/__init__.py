"""Workspace REST (dev endpoint) client."""

from synapse_workspace.rest.client import (
    ARTIFACT_KINDS,
    DEFAULT_API_VERSION,
    WorkspaceRestClient,
    workspace_endpoint,
)

__all__ = [
    "ARTIFACT_KINDS",
    "DEFAULT_API_VERSION",
    "WorkspaceRestClient",
    "workspace_endpoint",
]
