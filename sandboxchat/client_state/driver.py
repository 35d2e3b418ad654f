"""Event application driver.

Consumes the active workspace's live event stream, applies conversation
events to the snapshot strictly in arrival order, and publishes every new
snapshot to listeners.  Other events (``server.connected``, ``session.*``,
opaque passthroughs) are forwarded to event listeners untouched.

Every attachment gets a new *generation*.  Anything tagged with an older
generation (an event from a torn-down stream, a snapshot load that finished
after a workspace switch) raises ``StaleEventError`` internally and is dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING

from loguru import logger

from sandboxchat.client_state.context import ConnectionState
from sandboxchat.client_state.errors import StaleEventError, TransportError
from sandboxchat.client_state.managers import conversations
from sandboxchat.client_state.models.conversation import EMPTY_SNAPSHOT, Snapshot
from sandboxchat.client_state.models.enums import ConnectionStatus
from sandboxchat.client_state.models.events import (
    LiveEvent,
    MessagePartRemoved,
    MessagePartUpdated,
    MessageRemoved,
    MessageUpdated,
    is_event_for_session,
)

if TYPE_CHECKING:
    from sandboxchat.client_state.models.workspace import Workspace

EventStreamFactory = Callable[["Workspace"], AsyncIterator[LiveEvent]]
SnapshotListener = Callable[[Snapshot], None]
EventListener = Callable[[LiveEvent, int], None]

_CONVERSATION_EVENTS = (MessageUpdated, MessagePartUpdated, MessageRemoved, MessagePartRemoved)


class EventDriver:
    """Single writer of the conversation snapshot for the active workspace."""

    def __init__(
        self,
        stream_factory: EventStreamFactory,
        *,
        reconnect_delay: float = 3.0,
        max_retries: int = 3,
    ) -> None:
        self._stream_factory = stream_factory
        self._reconnect_delay = reconnect_delay
        self._max_retries = max_retries

        self._generation = 0
        self._workspace: Workspace | None = None
        self._session_id: str | None = None
        self._snapshot: Snapshot = EMPTY_SNAPSHOT
        self._connection = ConnectionState()
        self._task: asyncio.Task[None] | None = None

        self._snapshot_listeners: list[SnapshotListener] = []
        self._event_listeners: list[EventListener] = []

    # -- Query -----------------------------------------------------------------

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def workspace_id(self) -> str | None:
        return self._workspace.id if self._workspace else None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def connection(self) -> ConnectionState:
        return self._connection

    # -- Listeners -------------------------------------------------------------

    def on_snapshot(self, listener: SnapshotListener) -> Callable[[], None]:
        self._snapshot_listeners.append(listener)
        return lambda: self._snapshot_listeners.remove(listener)

    def on_event(self, listener: EventListener) -> Callable[[], None]:
        """Receive non-conversation events together with their generation."""
        self._event_listeners.append(listener)
        return lambda: self._event_listeners.remove(listener)

    def _publish(self) -> None:
        snapshot = self._snapshot
        for listener in list(self._snapshot_listeners):
            listener(snapshot)

    # -- Lifecycle -------------------------------------------------------------

    def reset(self) -> int:
        """Invalidate the current attachment synchronously.

        Bumps the generation, clears the snapshot and session and cancels the
        stream task without waiting for it.  Returns the new generation.
        """
        self._generation += 1
        self._workspace = None
        self._session_id = None
        self._connection = ConnectionState()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        if self._snapshot:
            self._snapshot = EMPTY_SNAPSHOT
            self._publish()
        return self._generation

    async def detach(self) -> None:
        """Tear down the current subscription and wait for its task to exit."""
        task = self._task
        self.reset()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def attach(self, workspace: Workspace) -> int:
        """Tear down any previous subscription, then subscribe to ``workspace``."""
        await self.detach()
        self._workspace = workspace
        generation = self._generation
        logger.info("Driver: attaching to workspace {} (generation {})", workspace.id, generation)
        self._task = asyncio.get_running_loop().create_task(self._pump(workspace, generation))
        return generation

    async def reconnect(self) -> None:
        """User-triggered retry after the connection gave up."""
        if self._workspace is None:
            return
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        conn = self._connection
        conn.failed_attempts = 0
        conn.has_exceeded_retries = False
        conn.error = None
        self._task = asyncio.get_running_loop().create_task(self._pump(self._workspace, self._generation))

    # -- Session ---------------------------------------------------------------

    def set_session(self, session_id: str | None) -> None:
        """Scope the snapshot to ``session_id``.  Switching sessions clears it."""
        if session_id == self._session_id:
            return
        self._session_id = session_id
        self._snapshot = EMPTY_SNAPSHOT
        self._publish()

    def load_snapshot(self, snapshot: Snapshot, *, generation: int, session_id: str) -> None:
        """Replace the snapshot with one loaded from the server.

        Raises ``StaleEventError`` if the workspace or session changed while
        the snapshot was being fetched.
        """
        if generation != self._generation or session_id != self._session_id:
            raise StaleEventError(session_id)
        self._snapshot = snapshot
        self._connection.stale = False
        self._publish()

    # -- Event application -----------------------------------------------------

    def apply(self, event: LiveEvent, generation: int) -> Snapshot:
        """Apply one event.  Raises ``StaleEventError`` for an old generation."""
        if generation != self._generation:
            raise StaleEventError(event.type)

        self._connection.last_event_type = event.type
        if not is_event_for_session(event, self._session_id):
            return self._snapshot

        if not isinstance(event, _CONVERSATION_EVENTS):
            for listener in list(self._event_listeners):
                listener(event, generation)
            return self._snapshot

        if self._session_id is None:
            logger.debug("Driver: no active session, dropping {}", event.type)
            return self._snapshot

        snapshot = self._snapshot
        if isinstance(event, MessageUpdated):
            snapshot = conversations.upsert_message(snapshot, event.info)
        elif isinstance(event, MessagePartUpdated):
            snapshot = conversations.upsert_message_part(snapshot, event.part)
        elif isinstance(event, MessageRemoved):
            snapshot = conversations.remove_message(snapshot, event.message_id)
        elif isinstance(event, MessagePartRemoved):
            snapshot = conversations.remove_message_part(snapshot, event.part_id, event.message_id)

        if snapshot is not self._snapshot:
            self._snapshot = snapshot
            self._publish()
        return snapshot

    async def _pump(self, workspace: Workspace, generation: int) -> None:
        conn = self._connection
        while True:
            conn.status = ConnectionStatus.RECONNECTING if conn.failed_attempts else ConnectionStatus.CONNECTING
            try:
                async for event in self._stream_factory(workspace):
                    if conn.status != ConnectionStatus.CONNECTED:
                        conn.status = ConnectionStatus.CONNECTED
                        conn.error = None
                    if conn.failed_attempts:
                        logger.info("Driver: stream for {} recovered, resetting retry counter", workspace.id)
                        conn.failed_attempts = 0
                        conn.has_exceeded_retries = False
                    try:
                        self.apply(event, generation)
                    except StaleEventError:
                        logger.debug("Driver: dropping {} from stale generation {}", event.type, generation)
                        return
                msg = "Event stream closed by server"
                raise TransportError(msg)
            except TransportError as exc:
                if generation != self._generation:
                    return
                conn.failed_attempts += 1
                conn.error = str(exc)
                conn.stale = True
                if conn.failed_attempts >= self._max_retries:
                    conn.status = ConnectionStatus.FAILED
                    conn.has_exceeded_retries = True
                    logger.warning(
                        "Driver: giving up on workspace {} after {} failed attempts: {}",
                        workspace.id,
                        conn.failed_attempts,
                        exc,
                    )
                    return
                conn.status = ConnectionStatus.RECONNECTING
                logger.warning(
                    "Driver: stream for {} failed ({}), reconnecting in {}s (attempt {}/{})",
                    workspace.id,
                    exc,
                    self._reconnect_delay,
                    conn.failed_attempts + 1,
                    self._max_retries,
                )
                await asyncio.sleep(self._reconnect_delay)
