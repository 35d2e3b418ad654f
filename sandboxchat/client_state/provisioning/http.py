"""HTTP implementation of the provisioning service.

Endpoints, relative to ``provisioning_url``::

    POST   ""        {"repoUrl", "branch"}  -> {"data": Workspace}
    GET    ""                               -> {"workspaces": [Workspace, ...]}
    GET    "/{id}"                          -> {"data": Workspace}
    DELETE "/{id}"                          -> {"data": {"success", "id"}}

Errors come back as ``{"error": {"message": ...}}`` or ``{"error": "..."}``.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from sandboxchat.client_state.errors import (
    TransportError,
    WorkspaceNotFoundError,
    WorkspaceValidationError,
)
from sandboxchat.client_state.models.workspace import (
    CreateWorkspaceRequest,
    DeleteWorkspaceResponse,
    Workspace,
)


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or fallback
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or fallback)
    if isinstance(error, str) and error:
        return error
    return fallback


def raise_for_status(response: httpx.Response, action: str, *, workspace_id: str | None = None) -> None:
    """Translate an HTTP error response into a domain exception."""
    if response.is_success:
        return
    message = _error_message(response, f"Failed to {action}")
    status = response.status_code
    if status in (400, 422):
        raise WorkspaceValidationError(message)
    if status == 404:
        raise WorkspaceNotFoundError(workspace_id or message)
    raise TransportError(f"{action} failed ({status}): {message}", status_code=status)


class HttpProvisioningClient:
    """``ProvisioningService`` over HTTP.

    Owns its ``httpx.AsyncClient`` unless one is injected (tests pass a client
    built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(headers=headers, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -- Requests --------------------------------------------------------------

    async def _request(self, method: str, path: str, action: str, **kwargs: Any) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Provisioning: {} {} failed: {}", method, url, exc)
            raise TransportError(f"{action} failed: {exc}") from exc

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"{action} returned invalid JSON") from exc

    @staticmethod
    def _unwrap(body: Any, action: str) -> dict[str, Any]:
        if not isinstance(body, dict):
            raise TransportError(f"{action} returned a non-object body")
        data = body.get("data", body)
        if not isinstance(data, dict):
            raise TransportError(f"{action} returned a non-object body")
        return data

    @staticmethod
    def _workspace(payload: Any, action: str) -> Workspace:
        try:
            return Workspace.model_validate(payload)
        except ValidationError as exc:
            raise TransportError(f"{action} returned a malformed workspace: {exc}") from exc

    # -- ProvisioningService ---------------------------------------------------

    async def create_workspace(self, request: CreateWorkspaceRequest) -> Workspace:
        action = "create workspace"
        response = await self._request("POST", "", action, json=request.to_wire())
        raise_for_status(response, action)
        body = self._json(response, action)
        return self._workspace(self._unwrap(body, action), action)

    async def list_workspaces(self) -> list[Workspace]:
        action = "list workspaces"
        response = await self._request("GET", "", action)
        raise_for_status(response, action)
        body = self._json(response, action)
        items = body.get("workspaces") if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise TransportError(f"{action} returned no workspace list")
        return [self._workspace(item, action) for item in items]

    async def get_workspace(self, workspace_id: str) -> Workspace:
        action = "get workspace"
        response = await self._request("GET", f"/{workspace_id}", action)
        raise_for_status(response, action, workspace_id=workspace_id)
        body = self._json(response, action)
        return self._workspace(self._unwrap(body, action), action)

    async def delete_workspace(self, workspace_id: str) -> DeleteWorkspaceResponse:
        action = "delete workspace"
        response = await self._request("DELETE", f"/{workspace_id}", action)
        raise_for_status(response, action, workspace_id=workspace_id)
        body = self._json(response, action)
        data = body.get("data", body) if isinstance(body, dict) else None
        try:
            return DeleteWorkspaceResponse.model_validate(data)
        except ValidationError as exc:
            raise TransportError(f"{action} returned a malformed response: {exc}") from exc
