"""Provisioning service interface.

The provisioning service creates, lists and tears down sandbox workspaces.
It is opaque to this layer: transitions (``initializing -> cloning -> ready``)
happen on the service side and are only observed through ``list_workspaces``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from sandboxchat.client_state.models.workspace import (
    CreateWorkspaceRequest,
    DeleteWorkspaceResponse,
    Workspace,
)


@runtime_checkable
class ProvisioningService(Protocol):
    """Async protocol for the workspace provisioning API.

    Implementations raise ``WorkspaceValidationError``, ``WorkspaceNotFoundError``
    or ``TransportError``; never transport-library exceptions.
    """

    async def create_workspace(self, request: CreateWorkspaceRequest) -> Workspace:
        """Request a new workspace.  Returns while it is still initializing."""
        ...

    async def list_workspaces(self) -> list[Workspace]:
        """All workspaces visible to the current user."""
        ...

    async def get_workspace(self, workspace_id: str) -> Workspace:
        """Raises ``WorkspaceNotFoundError`` if the id is unknown."""
        ...

    async def delete_workspace(self, workspace_id: str) -> DeleteWorkspaceResponse:
        """Request teardown.  Raises ``WorkspaceNotFoundError`` if the id is unknown."""
        ...
