"""Shared enumerations used across the client state layer."""

from __future__ import annotations

from enum import StrEnum

# -- Workspace ---------------------------------------------------------------


class WorkspaceStatus(StrEnum):
    """Provisioning status reported by the provisioning service.

    Forward-only in declaration order, except that ``ERROR`` may be reached
    from any state.
    """

    INITIALIZING = "initializing"
    CLONING = "cloning"
    READY = "ready"
    ERROR = "error"
    DELETING = "deleting"

    def can_transition_to(self, target: WorkspaceStatus) -> bool:
        if target == WorkspaceStatus.ERROR or target == self:
            return True
        if self == WorkspaceStatus.ERROR:
            return target == WorkspaceStatus.DELETING
        return _STATUS_ORDER.index(target) > _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    WorkspaceStatus.INITIALIZING,
    WorkspaceStatus.CLONING,
    WorkspaceStatus.READY,
    WorkspaceStatus.ERROR,
    WorkspaceStatus.DELETING,
]


class RegistryStatus(StrEnum):
    """What the registry knows about the workspace list.

    ``UNKNOWN`` (never loaded) and ``ERROR`` (last list failed) both mean
    "we don't know the state"; only ``LOADED`` means the list is authoritative.
    """

    UNKNOWN = "unknown"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class AutoCreateState(StrEnum):
    """Process-wide lifecycle of the default-workspace auto-creation."""

    NOT_ATTEMPTED = "not_attempted"
    PENDING = "pending"
    SUCCEEDED = "succeeded"


# -- Conversation ------------------------------------------------------------


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class PartType(StrEnum):
    """Part variants the store understands.  Anything else is opaque."""

    TEXT = "text"
    TOOL = "tool"


class ToolStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


# -- Live connection ---------------------------------------------------------


class ConnectionStatus(StrEnum):
    """Live connection state as seen by the rendering layer."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class EventType(StrEnum):
    """Live event types emitted by the workspace's agent server."""

    # Conversation
    MESSAGE_UPDATED = "message.updated"
    MESSAGE_REMOVED = "message.removed"
    MESSAGE_PART_UPDATED = "message.part.updated"
    MESSAGE_PART_REMOVED = "message.part.removed"

    # Session
    SESSION_UPDATED = "session.updated"
    SESSION_IDLE = "session.idle"
    SESSION_ERROR = "session.error"

    # Server
    SERVER_CONNECTED = "server.connected"
