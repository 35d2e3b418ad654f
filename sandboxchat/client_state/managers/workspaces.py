"""Workspace provisioning operations.

Validates caller input and applies the delete contract on top of a
``ProvisioningService``: create, list, get, delete.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger
from pydantic import ValidationError

from sandboxchat.client_state.errors import TransportError, WorkspaceValidationError
from sandboxchat.client_state.models.workspace import (
    LOCAL_WORKSPACE_ID,
    CreateWorkspaceRequest,
    DeleteWorkspaceResponse,
    Workspace,
)

if TYPE_CHECKING:
    from sandboxchat.client_state.provisioning.base import ProvisioningService


def build_create_request(repo_url: str, branch: str | None = None) -> CreateWorkspaceRequest:
    """Validate create input.  Raises ``WorkspaceValidationError``."""
    try:
        if branch is None:
            return CreateWorkspaceRequest(repo_url=repo_url)
        return CreateWorkspaceRequest(repo_url=repo_url, branch=branch)
    except ValidationError as exc:
        reasons = "; ".join(err["msg"].removeprefix("Value error, ") for err in exc.errors())
        msg = f"Invalid workspace request for {repo_url!r}: {reasons}"
        raise WorkspaceValidationError(msg) from None


async def create_workspace(service: ProvisioningService, repo_url: str, branch: str | None = None) -> Workspace:
    """Request a new workspace.  The result is usually still ``initializing``."""
    request = build_create_request(repo_url, branch)
    workspace = await service.create_workspace(request)
    logger.info(
        "Workspace created: {} ({}@{}, status={})",
        workspace.id,
        request.repo_url,
        request.branch,
        workspace.status,
    )
    return workspace


async def list_workspaces(service: ProvisioningService) -> list[Workspace]:
    """List workspaces.  Raises ``TransportError``; never returns ``[]`` on failure."""
    return await service.list_workspaces()


async def get_workspace(service: ProvisioningService, workspace_id: str) -> Workspace:
    """Get a workspace by ID.  Raises ``WorkspaceNotFoundError`` if missing."""
    return await service.get_workspace(workspace_id)


async def delete_workspace(
    service: ProvisioningService,
    workspace_id: str,
    *,
    local_workspace_id: str = LOCAL_WORKSPACE_ID,
) -> DeleteWorkspaceResponse:
    """Request teardown of a workspace.

    Raises ``WorkspaceValidationError`` for the reserved local workspace,
    ``WorkspaceNotFoundError`` if the service does not know the id, and
    ``TransportError`` if the call fails or the service answers ``success: false``.
    """
    if workspace_id == local_workspace_id:
        msg = "The local workspace cannot be deleted"
        raise WorkspaceValidationError(msg)

    response = await service.delete_workspace(workspace_id)
    if not response.success:
        msg = f"Provisioning service rejected deletion of workspace {workspace_id}"
        raise TransportError(msg)
    logger.info("Workspace deleted: {}", workspace_id)
    return response
