"""Builders and in-memory fakes shared by the test suite.

Nothing here talks to a real provisioning service or agent server.  The fake
provisioning service records calls and can be told to fail or to block a
create until released; the fake live stream is fed events by the test.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import httpx

from sandboxchat.client_state.errors import TransportError, WorkspaceNotFoundError
from sandboxchat.client_state.models.conversation import MessageInfo, TextPart, ToolPart, ToolState
from sandboxchat.client_state.models.enums import ToolStatus, WorkspaceStatus
from sandboxchat.client_state.models.events import LiveEvent
from sandboxchat.client_state.models.workspace import (
    CreateWorkspaceRequest,
    DeleteWorkspaceResponse,
    Workspace,
)
from sandboxchat.client_state.opencode.client import OpencodeClient

NOW = datetime(2026, 1, 1, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_workspace(
    workspace_id: str,
    *,
    status: WorkspaceStatus = WorkspaceStatus.READY,
    repo_url: str = "https://github.com/acme/widgets",
    opencode_url: str | None = "http://sandbox.test",
) -> Workspace:
    return Workspace(
        id=workspace_id,
        repo_url=repo_url,
        branch="main",
        status=status,
        opencode_url=opencode_url if status == WorkspaceStatus.READY else None,
        created_at=NOW,
        updated_at=NOW,
    )


def make_info(message_id: str, role: str = "assistant", session_id: str = "ses_1") -> MessageInfo:
    return MessageInfo(id=message_id, role=role, session_id=session_id)


def make_text(part_id: str, message_id: str, text: str, session_id: str = "ses_1") -> TextPart:
    return TextPart(id=part_id, message_id=message_id, session_id=session_id, text=text)


def make_tool(
    part_id: str,
    message_id: str,
    status: ToolStatus = ToolStatus.COMPLETED,
    session_id: str = "ses_1",
) -> ToolPart:
    return ToolPart(
        id=part_id,
        message_id=message_id,
        session_id=session_id,
        tool="bash",
        state=ToolState(status=status, input={"command": "ls"}, output="README.md"),
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeProvisioning:
    """In-memory ``ProvisioningService``."""

    def __init__(self, workspaces: list[Workspace] | None = None) -> None:
        self.workspaces: list[Workspace] = list(workspaces or [])
        self.create_calls: list[CreateWorkspaceRequest] = []
        self.delete_calls: list[str] = []
        self.list_calls = 0
        self.fail_list = False
        self.fail_create = False
        self.reject_delete = False
        self.create_gate: asyncio.Event | None = None
        self.list_gate: asyncio.Event | None = None
        self.created_status = WorkspaceStatus.INITIALIZING
        self._counter = 0

    async def create_workspace(self, request: CreateWorkspaceRequest) -> Workspace:
        self.create_calls.append(request)
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.fail_create:
            msg = "create workspace failed (500): boom"
            raise TransportError(msg, status_code=500)
        self._counter += 1
        workspace = make_workspace(f"sbx-new-{self._counter}", status=self.created_status, repo_url=request.repo_url)
        self.workspaces.append(workspace)
        return workspace

    async def list_workspaces(self) -> list[Workspace]:
        self.list_calls += 1
        snapshot = list(self.workspaces)
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.fail_list:
            msg = "list workspaces failed: connection refused"
            raise TransportError(msg)
        return snapshot

    async def get_workspace(self, workspace_id: str) -> Workspace:
        for workspace in self.workspaces:
            if workspace.id == workspace_id:
                return workspace
        raise WorkspaceNotFoundError(workspace_id)

    async def delete_workspace(self, workspace_id: str) -> DeleteWorkspaceResponse:
        self.delete_calls.append(workspace_id)
        if not any(w.id == workspace_id for w in self.workspaces):
            raise WorkspaceNotFoundError(workspace_id)
        if self.reject_delete:
            return DeleteWorkspaceResponse(success=False, id=workspace_id)
        self.workspaces = [w for w in self.workspaces if w.id != workspace_id]
        return DeleteWorkspaceResponse(success=True, id=workspace_id)


class FakeStream:
    """Live event source driven by the test.

    Each call of the factory opens a new "connection" that yields whatever
    the test pushes; ``fail()`` breaks the current connection and ``close()``
    ends it cleanly.
    """

    _CLOSE = object()

    def __init__(self) -> None:
        self.opened: list[str] = []
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.refuse = False

    async def __call__(self, workspace: Workspace) -> AsyncIterator[LiveEvent]:
        self.opened.append(workspace.id)
        if self.refuse:
            msg = "Event stream failed (502): bad gateway"
            raise TransportError(msg, status_code=502)
        while True:
            item = await self._queue.get()
            if item is self._CLOSE:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def push(self, event: LiveEvent) -> None:
        self._queue.put_nowait(event)

    def fail(self, message: str = "connection reset") -> None:
        self._queue.put_nowait(TransportError(message))

    def close(self) -> None:
        self._queue.put_nowait(self._CLOSE)


async def drain() -> None:
    """Let the event loop run queued callbacks and tasks."""
    for _ in range(10):
        await asyncio.sleep(0)



class _FakeOpencodeClient(OpencodeClient):
    def __init__(self, workspace: Workspace, server: FakeAgentServer) -> None:
        transport = httpx.MockTransport(server.handle)
        super().__init__(workspace.opencode_url or "", client=httpx.AsyncClient(transport=transport))
        self._workspace = workspace
        self._server = server

    async def stream_events(self) -> AsyncIterator[LiveEvent]:
        async for event in self._server.stream(self._workspace):
            yield event


class FakeAgentServer:
    """Agent server behind every ready workspace, served over ``httpx.MockTransport``.

    The live stream is a ``FakeStream`` shared by all workspaces.
    """

    def __init__(self) -> None:
        self.stream = FakeStream()
        self.sessions: list[dict[str, Any]] = []
        self.messages: dict[str, list[dict[str, Any]]] = {}
        self.prompts: list[tuple[str, dict[str, Any]]] = []
        self.clients: list[str] = []

    def factory(self, workspace: Workspace) -> OpencodeClient:
        self.clients.append(workspace.id)
        return _FakeOpencodeClient(workspace, self)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/session" and request.method == "GET":
            return httpx.Response(200, json=self.sessions)
        if path == "/session" and request.method == "POST":
            body = json.loads(request.content or b"{}")
            session = {"id": f"ses_{len(self.sessions) + 1}", "title": body.get("title")}
            self.sessions.append(session)
            return httpx.Response(200, json=session)
        if path == "/config/providers":
            return httpx.Response(200, json={"providers": [{"id": "anthropic"}]})
        if path.startswith("/session/") and path.endswith("/message"):
            session_id = path.split("/")[2]
            if request.method == "POST":
                self.prompts.append((session_id, json.loads(request.content)))
                return httpx.Response(200, json={"info": {"id": "m_reply", "sessionID": session_id}})
            return httpx.Response(200, json=self.messages.get(session_id, []))
        return httpx.Response(404, json={"error": f"no route for {request.method} {path}"})
