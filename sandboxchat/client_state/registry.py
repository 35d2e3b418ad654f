"""In-process workspace registry.

Holds the last known workspace list and the active workspace id.  The list is
observed, not driven: it reflects what the provisioning service reported on
the latest ``refresh``, overlaid with local mutations the service has not yet
confirmed.

Reconciliation uses a monotonically increasing sequence number.  Every
``refresh`` records the sequence at which its request was issued; every local
mutation (create or delete) records the sequence at which it was applied.  A
list result only overrides a mutation that was applied *before* the list
request went out; newer mutations stay optimistic until a later list confirms
or supersedes them.  List results older than the last applied one are dropped.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from loguru import logger

from sandboxchat.client_state.errors import TransportError, WorkspaceNotFoundError
from sandboxchat.client_state.managers import workspaces as workspace_ops
from sandboxchat.client_state.models.enums import RegistryStatus
from sandboxchat.client_state.models.workspace import LOCAL_WORKSPACE_ID, Workspace

if TYPE_CHECKING:
    from sandboxchat.client_state.provisioning.base import ProvisioningService


class ChangeKind(StrEnum):
    LIST = "list"
    ACTIVE = "active"
    STATUS = "status"


@dataclass(frozen=True)
class RegistryChange:
    kind: ChangeKind
    previous_active_id: str | None = None
    active_id: str | None = None


RegistryListener = Callable[[RegistryChange], None]


class WorkspaceRegistry:
    """Known workspaces plus the active selection.

    Single-writer: all methods run on the event loop thread.  Listeners are
    called synchronously after each change, in registration order.
    """

    def __init__(self, service: ProvisioningService, *, local_workspace_id: str = LOCAL_WORKSPACE_ID) -> None:
        self._service = service
        self.local_workspace_id = local_workspace_id

        self._workspaces: list[Workspace] = []
        self._active_id: str | None = None
        self._status = RegistryStatus.UNKNOWN
        self._error: str | None = None

        self._seq = 0
        self._applied_list_seq = -1
        self._pending_creates: dict[str, tuple[int, Workspace]] = {}
        self._pending_deletes: dict[str, int] = {}

        self._listeners: list[RegistryListener] = []

    # -- Listeners -------------------------------------------------------------

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Register a change listener.  Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, change: RegistryChange) -> None:
        for listener in list(self._listeners):
            listener(change)

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    # -- Query -----------------------------------------------------------------

    @property
    def workspaces(self) -> list[Workspace]:
        return list(self._workspaces)

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active(self) -> Workspace | None:
        return self.get(self._active_id) if self._active_id else None

    @property
    def status(self) -> RegistryStatus:
        return self._status

    @property
    def error(self) -> str | None:
        """Message of the last failed ``refresh``; cleared by the next success."""
        return self._error

    @property
    def is_known(self) -> bool:
        """True when the list is authoritative (last refresh succeeded)."""
        return self._status == RegistryStatus.LOADED

    def get(self, workspace_id: str) -> Workspace | None:
        for workspace in self._workspaces:
            if workspace.id == workspace_id:
                return workspace
        return None

    # -- Refresh ---------------------------------------------------------------

    async def refresh(self) -> list[Workspace]:
        """Fetch the list from the service and reconcile it with local state.

        On failure the previous list is kept, the status becomes ``ERROR`` and
        ``TransportError`` propagates: a failed list means "unknown", not "empty".
        A failure older than an applied list still propagates but leaves the
        status alone.
        """
        started = self._next_seq()
        self._set_status(RegistryStatus.LOADING)
        try:
            listed = await workspace_ops.list_workspaces(self._service)
        except TransportError as exc:
            if started < self._applied_list_seq:
                logger.debug("Registry: list {} failed after newer list {} applied", started, self._applied_list_seq)
                raise
            self._error = str(exc)
            logger.warning("Registry: workspace list failed: {}", exc)
            self._set_status(RegistryStatus.ERROR)
            raise

        if started < self._applied_list_seq:
            logger.debug("Registry: dropping list result {} older than applied {}", started, self._applied_list_seq)
            return self.workspaces

        self._applied_list_seq = started
        self._error = None
        self._workspaces = self._reconcile(listed, started)
        self._status = RegistryStatus.LOADED
        logger.debug("Registry: {} workspaces after refresh", len(self._workspaces))

        # Clear first so listeners reacting to LIST see no active workspace.
        if self._active_id is not None and self.get(self._active_id) is None:
            logger.info("Registry: active workspace {} no longer listed, clearing selection", self._active_id)
            self.select(None)
        self._notify(RegistryChange(ChangeKind.LIST, self._active_id, self._active_id))
        return self.workspaces

    def _reconcile(self, listed: list[Workspace], started: int) -> list[Workspace]:
        listed_ids = {w.id for w in listed}
        result: list[Workspace] = []

        for workspace in listed:
            deleted_at = self._pending_deletes.get(workspace.id)
            if deleted_at is not None and deleted_at > started:
                # Listing was requested before our delete landed.
                continue
            self._check_transition(workspace)
            result.append(workspace)

        for workspace_id, deleted_at in list(self._pending_deletes.items()):
            if deleted_at < started:
                del self._pending_deletes[workspace_id]

        for workspace_id, (created_at, workspace) in list(self._pending_creates.items()):
            if workspace_id in listed_ids or created_at < started:
                del self._pending_creates[workspace_id]
            else:
                result.append(workspace)

        return result

    def _check_transition(self, workspace: Workspace) -> None:
        previous = self.get(workspace.id)
        if previous is None or previous.status == workspace.status:
            return
        if not previous.status.can_transition_to(workspace.status):
            logger.warning(
                "Registry: workspace {} reported {} -> {}, reflecting as reported",
                workspace.id,
                previous.status,
                workspace.status,
            )
        else:
            logger.info("Registry: workspace {} is now {}", workspace.id, workspace.status)

    async def fetch(self, workspace_id: str) -> Workspace:
        """Re-read one workspace from the service and update it in the list.

        Raises ``WorkspaceNotFoundError`` or ``TransportError``.
        """
        workspace = await workspace_ops.get_workspace(self._service, workspace_id)
        for i, existing in enumerate(self._workspaces):
            if existing.id == workspace_id:
                self._check_transition(workspace)
                self._workspaces[i] = workspace
                self._notify(RegistryChange(ChangeKind.LIST, self._active_id, self._active_id))
                break
        return workspace

    # -- Mutation --------------------------------------------------------------

    async def create(self, repo_url: str, branch: str | None = None) -> Workspace:
        """Provision a workspace and add it to the list optimistically.

        Does not change the active selection; callers decide whether to select.
        Raises ``WorkspaceValidationError`` or ``TransportError``.
        """
        workspace = await workspace_ops.create_workspace(self._service, repo_url, branch)
        self._pending_creates[workspace.id] = (self._next_seq(), workspace)
        self._pending_deletes.pop(workspace.id, None)
        self._workspaces = [w for w in self._workspaces if w.id != workspace.id] + [workspace]
        self._notify(RegistryChange(ChangeKind.LIST, self._active_id, self._active_id))
        return workspace

    async def delete(self, workspace_id: str) -> bool:
        """Tear down a workspace and remove it locally.

        Returns ``True`` when the service confirmed the deletion and ``False``
        when it did not know the id (already gone; treated as satisfied).
        Deleting the active workspace clears the selection.  Raises
        ``WorkspaceValidationError`` for the local workspace and
        ``TransportError`` when the service fails or rejects the request;
        in that case local state is left untouched.
        """
        try:
            await workspace_ops.delete_workspace(
                self._service,
                workspace_id,
                local_workspace_id=self.local_workspace_id,
            )
            confirmed = True
        except WorkspaceNotFoundError:
            logger.info("Registry: workspace {} already gone on the service", workspace_id)
            confirmed = False

        self._pending_deletes[workspace_id] = self._next_seq()
        self._pending_creates.pop(workspace_id, None)
        self._workspaces = [w for w in self._workspaces if w.id != workspace_id]
        self._notify(RegistryChange(ChangeKind.LIST, self._active_id, self._active_id))
        if self._active_id == workspace_id:
            self.select(None)
        return confirmed

    def select(self, workspace_id: str | None) -> None:
        """Set the active workspace.  Raises ``WorkspaceNotFoundError`` for unknown ids."""
        if workspace_id is not None and self.get(workspace_id) is None:
            raise WorkspaceNotFoundError(workspace_id)
        if workspace_id == self._active_id:
            return
        previous = self._active_id
        self._active_id = workspace_id
        logger.info("Registry: active workspace {} -> {}", previous, workspace_id)
        self._notify(RegistryChange(ChangeKind.ACTIVE, previous, workspace_id))

    def _set_status(self, status: RegistryStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._notify(RegistryChange(ChangeKind.STATUS, self._active_id, self._active_id))
