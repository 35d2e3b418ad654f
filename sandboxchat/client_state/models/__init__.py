"""Data models for the client state layer."""

from sandboxchat.client_state.models.conversation import (
    EMPTY_SNAPSHOT,
    MessageInfo,
    MessageWithParts,
    OpaquePart,
    Part,
    Snapshot,
    TextPart,
    ToolPart,
    ToolState,
    parse_part,
)
from sandboxchat.client_state.models.enums import (
    AutoCreateState,
    ConnectionStatus,
    EventType,
    MessageRole,
    PartType,
    RegistryStatus,
    ToolStatus,
    WorkspaceStatus,
)
from sandboxchat.client_state.models.events import (
    LiveEvent,
    MessagePartRemoved,
    MessagePartUpdated,
    MessageRemoved,
    MessageUpdated,
    OpaqueEvent,
    ServerConnected,
    SessionError,
    SessionIdle,
    SessionUpdated,
    parse_event,
)
from sandboxchat.client_state.models.workspace import (
    LOCAL_WORKSPACE_ID,
    CreateWorkspaceRequest,
    DeleteWorkspaceResponse,
    Workspace,
)

__all__ = [
    # Conversation
    "EMPTY_SNAPSHOT",
    # Workspace
    "LOCAL_WORKSPACE_ID",
    # Enums
    "AutoCreateState",
    "ConnectionStatus",
    "CreateWorkspaceRequest",
    "DeleteWorkspaceResponse",
    "EventType",
    # Events
    "LiveEvent",
    "MessageInfo",
    "MessagePartRemoved",
    "MessagePartUpdated",
    "MessageRemoved",
    "MessageRole",
    "MessageUpdated",
    "MessageWithParts",
    "OpaqueEvent",
    "OpaquePart",
    "Part",
    "PartType",
    "RegistryStatus",
    "ServerConnected",
    "SessionError",
    "SessionIdle",
    "SessionUpdated",
    "Snapshot",
    "TextPart",
    "ToolPart",
    "ToolState",
    "ToolStatus",
    "Workspace",
    "WorkspaceStatus",
    "parse_event",
    "parse_part",
]
