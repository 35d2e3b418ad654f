"""Workspace-scoped client context.

``WorkspaceCache`` holds everything the rendering layer shows that belongs to
one workspace other than the conversation snapshot (which the event driver
owns).  It is replaced wholesale on every active-workspace change so nothing
from the previous workspace can leak into the next one.

``ConnectionState`` is the live connection's status as exposed to readers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sandboxchat.client_state.models.enums import ConnectionStatus


@dataclass
class WorkspaceCache:
    """Cached data for the active workspace."""

    # -- Identity --------------------------------------------------------------
    workspace_id: str | None = None
    epoch: int = 0
    """Selection epoch this cache was created for; stale async results compare against it."""

    # -- Agent server data -----------------------------------------------------
    sessions: list[dict[str, Any]] = field(default_factory=list)
    providers: list[dict[str, Any]] = field(default_factory=list)
    active_session_id: str | None = None

    # -- Bookkeeping -----------------------------------------------------------
    server_connected_seen: bool = False
    """Set once the first ``server.connected`` event of this workspace was handled."""

    def upsert_session(self, info: dict[str, Any]) -> None:
        session_id = info.get("id")
        if session_id is None:
            return
        for i, existing in enumerate(self.sessions):
            if existing.get("id") == session_id:
                self.sessions[i] = info
                return
        self.sessions.append(info)


@dataclass
class ConnectionState:
    """Live connection status.

    ``stale`` is set whenever events may have been missed (connection lost)
    and cleared once the snapshot is reloaded from the server.
    """

    status: ConnectionStatus = ConnectionStatus.IDLE
    error: str | None = None
    failed_attempts: int = 0
    has_exceeded_retries: bool = False
    stale: bool = False
    last_event_type: str | None = None
    last_session_error: Any = None

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    @property
    def degraded(self) -> bool:
        return self.stale or self.status in (ConnectionStatus.RECONNECTING, ConnectionStatus.FAILED)
