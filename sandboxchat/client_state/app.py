"""Client state facade exposed to the rendering layer.

``ChatApp`` wires the workspace registry, the auto-provisioning policy, the
event driver and the workspace-scoped cache together:

- registry list changes run the policy (only once the list is authoritative);
- active-workspace changes synchronously drop every workspace-scoped cache and
  the conversation snapshot, then re-attach the driver in the background;
- async results (create, session loads) that complete after the selection
  moved on only update the registry, never the new workspace's view.

Typical use::

    async with ChatApp() as chat:
        chat.subscribe(render)
        await chat.send_message("hello")
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable, Coroutine
from typing import Any

from loguru import logger

from sandboxchat.client_state.context import ConnectionState, WorkspaceCache
from sandboxchat.client_state.driver import EventDriver
from sandboxchat.client_state.errors import (
    StaleEventError,
    TransportError,
    WorkspaceValidationError,
)
from sandboxchat.client_state.log import setup_logging
from sandboxchat.client_state.models.conversation import Snapshot
from sandboxchat.client_state.models.enums import AutoCreateState, RegistryStatus
from sandboxchat.client_state.models.events import (
    LiveEvent,
    ServerConnected,
    SessionError,
    SessionIdle,
    SessionUpdated,
)
from sandboxchat.client_state.models.workspace import Workspace
from sandboxchat.client_state.opencode.client import OpencodeClient
from sandboxchat.client_state.policy import (
    AutoProvisioner,
    DefaultRepositoryPolicy,
    fixed_default_repository,
    no_default_repository,
)
from sandboxchat.client_state.provisioning.base import ProvisioningService
from sandboxchat.client_state.provisioning.http import HttpProvisioningClient
from sandboxchat.client_state.registry import ChangeKind, RegistryChange, WorkspaceRegistry
from sandboxchat.client_state.settings import ChatSettings, get_settings

OpencodeFactory = Callable[[Workspace], OpencodeClient]


class ChatApp:
    """Read-only state plus imperative commands for one UI session."""

    def __init__(
        self,
        settings: ChatSettings | None = None,
        *,
        provisioning: ProvisioningService | None = None,
        opencode_factory: OpencodeFactory | None = None,
        default_repository: DefaultRepositoryPolicy | None = None,
    ) -> None:
        self.settings = settings = settings or get_settings()

        self._owned_provisioning: HttpProvisioningClient | None = None
        if provisioning is None:
            provisioning = self._owned_provisioning = HttpProvisioningClient(
                settings.provisioning_url,
                headers=settings.auth_headers(),
                timeout=settings.request_timeout,
            )
        self._opencode_factory = opencode_factory or self._default_opencode_factory

        if default_repository is None:
            default_repository = (
                fixed_default_repository(settings.default_repo_url, settings.default_branch)
                if settings.auto_provision
                else no_default_repository
            )

        self.registry = WorkspaceRegistry(provisioning, local_workspace_id=settings.local_workspace_id)
        self.provisioner = AutoProvisioner(self.registry, default_repository)
        self.driver = EventDriver(
            self._stream_events,
            reconnect_delay=settings.reconnect_delay,
            max_retries=settings.max_retries,
        )

        self._cache = WorkspaceCache()
        self._epoch = 0
        self._user_creates = 0
        self._opencode: OpencodeClient | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._poll_task: asyncio.Task[None] | None = None
        self._activation: asyncio.Task[None] | None = None
        self._stream_complete_listeners: list[Callable[[str | None], None]] = []
        self.error: str | None = None

        self.registry.subscribe(self._on_registry_change)
        self.driver.on_event(self._on_live_event)

    def _default_opencode_factory(self, workspace: Workspace) -> OpencodeClient:
        return OpencodeClient(
            workspace.opencode_url or "",
            headers=self.settings.auth_headers(),
            timeout=self.settings.request_timeout,
        )

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Load the workspace list and start background polling if configured.

        A failed initial list is recorded in ``error`` and ``registry_status``
        rather than raised; ``refresh_workspaces`` retries it.
        """
        if self.settings.configure_logging:
            setup_logging(self.settings.log_level)
        try:
            await self.refresh_workspaces()
        except TransportError:
            logger.warning("ChatApp: initial workspace list failed, state unknown")
        if self.settings.poll_interval > 0 and self._poll_task is None:
            self._poll_task = asyncio.get_running_loop().create_task(self._poll(self.settings.poll_interval))

    async def close(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.driver.detach()
        await self._close_opencode()
        if self._owned_provisioning is not None:
            await self._owned_provisioning.aclose()

    async def __aenter__(self) -> ChatApp:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def settle(self) -> None:
        """Wait until all background work (activation, auto-create, loads) is done."""
        while True:
            if self.provisioner.busy:
                await asyncio.gather(self.provisioner.wait(), return_exceptions=True)
                continue
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _poll(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.registry.refresh()
            except TransportError as exc:
                logger.debug("ChatApp: background refresh failed: {}", exc)

    # -- Read-only state -------------------------------------------------------

    @property
    def workspaces(self) -> list[Workspace]:
        return self.registry.workspaces

    @property
    def active_workspace_id(self) -> str | None:
        return self.registry.active_id

    @property
    def active_workspace(self) -> Workspace | None:
        return self.registry.active

    @property
    def registry_status(self) -> RegistryStatus:
        return self.registry.status

    @property
    def snapshot(self) -> Snapshot:
        return self.driver.snapshot

    @property
    def connection(self) -> ConnectionState:
        return self.driver.connection

    @property
    def sessions(self) -> list[dict[str, Any]]:
        return list(self._cache.sessions)

    @property
    def providers(self) -> list[dict[str, Any]]:
        return list(self._cache.providers)

    @property
    def active_session_id(self) -> str | None:
        return self._cache.active_session_id

    @property
    def auto_create_state(self) -> AutoCreateState:
        return self.provisioner.state

    def subscribe(self, listener: Callable[[Snapshot], None]) -> Callable[[], None]:
        """Call ``listener`` with every new conversation snapshot."""
        return self.driver.on_snapshot(listener)

    def on_stream_complete(self, listener: Callable[[str | None], None]) -> None:
        """Call ``listener(session_id)`` when the agent goes idle."""
        self._stream_complete_listeners.append(listener)

    # -- Workspace commands ----------------------------------------------------

    async def refresh_workspaces(self) -> list[Workspace]:
        try:
            workspaces = await self.registry.refresh()
        except TransportError as exc:
            self.error = str(exc)
            raise
        self.error = None
        await self.settle()
        return workspaces

    async def create_workspace(self, repo_url: str, branch: str | None = None) -> Workspace:
        """Provision a workspace and make it active, unless the user moved on meanwhile.

        Auto-selection is held off while the create is in flight so the list
        update it triggers cannot activate some other workspace first.
        """
        epoch = self._epoch
        self._user_creates += 1
        try:
            try:
                workspace = await self.registry.create(repo_url, branch)
            finally:
                self._user_creates -= 1
        except (WorkspaceValidationError, TransportError) as exc:
            self.error = str(exc)
            if not self._user_creates:
                self.provisioner.evaluate()
            raise
        self.error = None
        active_id = self.registry.active_id
        if active_id is None or (self._epoch == epoch and active_id != workspace.id):
            self.registry.select(workspace.id)
        elif active_id != workspace.id:
            logger.debug("ChatApp: created {} after selection changed, not activating", workspace.id)
        await self.settle()
        return workspace

    async def delete_workspace(self, workspace_id: str) -> bool:
        """Delete a workspace.  Returns ``False`` if it was already gone."""
        try:
            confirmed = await self.registry.delete(workspace_id)
        except (WorkspaceValidationError, TransportError) as exc:
            self.error = str(exc)
            raise
        self.error = None
        await self.settle()
        return confirmed

    async def select_workspace(self, workspace_id: str | None) -> None:
        self.registry.select(workspace_id)
        await self.settle()

    # -- Session commands ------------------------------------------------------

    def _require_opencode(self) -> OpencodeClient:
        if self._opencode is None:
            msg = "No ready workspace is active"
            raise TransportError(msg)
        return self._opencode

    def _check_epoch(self, epoch: int, what: str) -> None:
        if epoch != self._epoch:
            raise StaleEventError(what)

    async def select_session(self, session_id: str | None) -> None:
        """Make ``session_id`` the active conversation and load its messages."""
        epoch = self._epoch
        self._cache.active_session_id = session_id
        self.driver.set_session(session_id)
        if session_id is None:
            return
        await self._load_messages(epoch, session_id)

    async def _load_messages(self, epoch: int, session_id: str) -> None:
        client = self._require_opencode()
        generation = self.driver.generation
        snapshot = await client.list_messages(session_id)
        try:
            self._check_epoch(epoch, f"messages of {session_id}")
            self.driver.load_snapshot(snapshot, generation=generation, session_id=session_id)
        except StaleEventError:
            logger.debug("ChatApp: discarding messages of {} loaded for a previous selection", session_id)

    async def create_session(self, title: str | None = None) -> dict[str, Any]:
        epoch = self._epoch
        client = self._require_opencode()
        session = await client.create_session(title or self.settings.default_session_title)
        try:
            self._check_epoch(epoch, f"session {session['id']}")
        except StaleEventError:
            logger.debug("ChatApp: session {} created for a previous selection", session["id"])
            return session
        self._cache.upsert_session(session)
        await self.select_session(session["id"])
        return session

    async def send_message(
        self,
        text: str,
        *,
        provider_id: str | None = None,
        model_id: str | None = None,
    ) -> Any:
        """Send an outbound user message, creating a session first if none is active."""
        client = self._require_opencode()
        session_id = self._cache.active_session_id
        if session_id is None:
            session_id = (await self.create_session())["id"]
        return await client.send_prompt(session_id, text, provider_id=provider_id, model_id=model_id)

    async def reconnect(self) -> None:
        await self.driver.reconnect()

    # -- Registry reactions ----------------------------------------------------

    def _on_registry_change(self, change: RegistryChange) -> None:
        if change.kind == ChangeKind.ACTIVE:
            self._on_active_change(change.previous_active_id, change.active_id)
            return
        if change.kind == ChangeKind.LIST:
            if self._user_creates:
                logger.debug("ChatApp: workspace create in flight, deferring auto-selection")
            else:
                self.provisioner.evaluate()
            self._attach_if_ready()

    def _on_active_change(self, previous: str | None, current: str | None) -> None:
        self._epoch += 1
        self._cache = WorkspaceCache(workspace_id=current, epoch=self._epoch)
        self.driver.reset()
        logger.info("ChatApp: workspace {} -> {}, cleared workspace-scoped cache", previous, current)
        self._activation = self._spawn(self._activate(self._epoch))

    def _attach_if_ready(self) -> None:
        workspace = self.registry.active
        if workspace is None or not workspace.is_ready:
            return
        if self.driver.workspace_id == workspace.id and self._opencode is not None:
            return
        if self._activation is not None and not self._activation.done():
            return
        self._activation = self._spawn(self._activate(self._epoch))

    async def _activate(self, epoch: int) -> None:
        await self.driver.detach()
        await self._close_opencode()
        if epoch != self._epoch:
            return

        workspace = self.registry.active
        if workspace is None:
            return
        if not workspace.is_ready:
            logger.info("ChatApp: workspace {} is {}, waiting for ready", workspace.id, workspace.status)
            return

        self._opencode = self._opencode_factory(workspace)
        await self.driver.attach(workspace)
        try:
            await self._load_workspace_data(epoch)
        except StaleEventError:
            logger.debug("ChatApp: workspace data for epoch {} arrived after switch", epoch)
        except TransportError as exc:
            self.error = str(exc)
            logger.warning("ChatApp: failed to load workspace data: {}", exc)

    async def _load_workspace_data(self, epoch: int) -> None:
        client = self._require_opencode()
        sessions = await client.list_sessions()
        self._check_epoch(epoch, "sessions")
        self._cache.sessions = sessions
        providers = await client.list_providers()
        self._check_epoch(epoch, "providers")
        self._cache.providers = providers

    async def _close_opencode(self) -> None:
        client, self._opencode = self._opencode, None
        if client is not None:
            await client.aclose()

    # -- Live event reactions --------------------------------------------------

    async def _stream_events(self, workspace: Workspace) -> AsyncIterator[LiveEvent]:
        client = self._opencode
        if client is None or self.driver.workspace_id != workspace.id:
            msg = f"No agent server client for workspace {workspace.id}"
            raise TransportError(msg)
        async for event in client.stream_events():
            yield event

    def _on_live_event(self, event: LiveEvent, generation: int) -> None:
        if isinstance(event, ServerConnected):
            self._spawn(self._on_server_connected(self._epoch))
        elif isinstance(event, SessionIdle):
            logger.debug("ChatApp: session {} idle", event.session_id)
            for listener in list(self._stream_complete_listeners):
                listener(event.session_id)
        elif isinstance(event, SessionError):
            self.driver.connection.last_session_error = event.error
            logger.warning("ChatApp: session {} error: {}", event.session_id, event.error)
        elif isinstance(event, SessionUpdated):
            self._cache.upsert_session(event.info)

    async def _on_server_connected(self, epoch: int) -> None:
        """First connect: ensure a session exists.  Reconnects: reload to clear staleness."""
        if epoch != self._epoch:
            return
        first = not self._cache.server_connected_seen
        self._cache.server_connected_seen = True
        try:
            if first and self._cache.active_session_id is None:
                session = await self.create_session()
                logger.info("ChatApp: created default session {}", session["id"])
            elif self._cache.active_session_id is not None:
                await self._load_messages(epoch, self._cache.active_session_id)
            await self._load_workspace_data(epoch)
        except StaleEventError:
            logger.debug("ChatApp: server.connected handling for epoch {} went stale", epoch)
        except TransportError as exc:
            self.error = str(exc)
            logger.warning("ChatApp: failed to set up session after connect: {}", exc)
