"""Auto-selection and auto-provisioning policy.

``decide`` is a pure reducer: given the workspace list, the active id, what
the registry knows, and the auto-create lifecycle state, it returns what
should happen next.  ``AutoProvisioner`` owns the lifecycle state cell and
executes decisions; it is invoked once per registry change.

Rules, applied only while nothing is active and the list is authoritative:

1. the local workspace, if listed, is selected;
2. otherwise the first non-local workspace in list order is selected;
3. otherwise, if auto-creation has neither been attempted successfully nor is
   in flight, one default workspace is created and selected when it returns.

The auto-create state moves ``not_attempted -> pending -> succeeded`` and is
never reset after success, so a transiently empty list cannot re-fire it.
A failed creation returns it to ``not_attempted``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from loguru import logger

from sandboxchat.client_state.errors import TransportError, WorkspaceValidationError
from sandboxchat.client_state.models.enums import AutoCreateState, RegistryStatus
from sandboxchat.client_state.models.workspace import LOCAL_WORKSPACE_ID, Workspace

if TYPE_CHECKING:
    from sandboxchat.client_state.registry import WorkspaceRegistry


@dataclass(frozen=True)
class DefaultRepository:
    repo_url: str
    branch: str = "main"


DefaultRepositoryPolicy = Callable[[], DefaultRepository | None]
"""Returns the repository to auto-provision, or ``None`` to never auto-create."""


def fixed_default_repository(repo_url: str, branch: str = "main") -> DefaultRepositoryPolicy:
    repository = DefaultRepository(repo_url=repo_url, branch=branch)
    return lambda: repository


def no_default_repository() -> DefaultRepository | None:
    return None


class Action(StrEnum):
    NONE = "none"
    SELECT = "select"
    CREATE = "create"


@dataclass(frozen=True)
class Decision:
    action: Action
    workspace_id: str | None = None
    repository: DefaultRepository | None = None


NO_ACTION = Decision(Action.NONE)


def decide(
    workspaces: Sequence[Workspace],
    active_id: str | None,
    *,
    list_status: RegistryStatus,
    auto_create: AutoCreateState,
    default_repository: DefaultRepositoryPolicy = no_default_repository,
    local_workspace_id: str = LOCAL_WORKSPACE_ID,
) -> Decision:
    if active_id is not None:
        return NO_ACTION
    if list_status != RegistryStatus.LOADED:
        return NO_ACTION

    ids = [w.id for w in workspaces]
    if local_workspace_id in ids:
        return Decision(Action.SELECT, workspace_id=local_workspace_id)

    for workspace_id in ids:
        if workspace_id != local_workspace_id:
            return Decision(Action.SELECT, workspace_id=workspace_id)

    if auto_create != AutoCreateState.NOT_ATTEMPTED:
        return NO_ACTION
    repository = default_repository()
    if repository is None:
        return NO_ACTION
    return Decision(Action.CREATE, repository=repository)


class AutoProvisioner:
    """Owns the auto-create state cell and applies ``decide`` to a registry."""

    def __init__(
        self,
        registry: WorkspaceRegistry,
        default_repository: DefaultRepositoryPolicy = no_default_repository,
    ) -> None:
        self._registry = registry
        self._default_repository = default_repository
        self._state = AutoCreateState.NOT_ATTEMPTED
        self._task: asyncio.Task[Workspace | None] | None = None
        self.last_error: str | None = None

    @property
    def state(self) -> AutoCreateState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def evaluate(self) -> Decision:
        """Run the policy against the registry's current state and act on it."""
        registry = self._registry
        decision = decide(
            registry.workspaces,
            registry.active_id,
            list_status=registry.status,
            auto_create=self._state,
            default_repository=self._default_repository,
            local_workspace_id=registry.local_workspace_id,
        )

        if decision.action == Action.SELECT:
            logger.info("Policy: auto-selecting workspace {}", decision.workspace_id)
            registry.select(decision.workspace_id)
        elif decision.action == Action.CREATE:
            # Flip the guard before yielding so re-entrant evaluations see it.
            self._state = AutoCreateState.PENDING
            repository = decision.repository
            logger.info("Policy: no workspaces, auto-creating {}@{}", repository.repo_url, repository.branch)
            self._task = asyncio.get_running_loop().create_task(self._create(repository))
        return decision

    async def _create(self, repository: DefaultRepository) -> Workspace | None:
        try:
            workspace = await self._registry.create(repository.repo_url, repository.branch)
        except (TransportError, WorkspaceValidationError) as exc:
            self._state = AutoCreateState.NOT_ATTEMPTED
            self.last_error = str(exc)
            logger.warning("Policy: auto-create failed: {}", exc)
            return None

        self._state = AutoCreateState.SUCCEEDED
        self.last_error = None
        if self._registry.active_id is None:
            self._registry.select(workspace.id)
        elif self._registry.active_id != workspace.id:
            logger.debug(
                "Policy: auto-created {} but {} is already active, not selecting",
                workspace.id,
                self._registry.active_id,
            )
        return workspace

    async def wait(self) -> Workspace | None:
        """Wait for an in-flight auto-creation, if any."""
        if self._task is None:
            return None
        return await self._task
