"""Conversation data models.

A conversation snapshot is an ordered tuple of ``MessageWithParts``; each holds
an immutable ``MessageInfo`` plus an ordered tuple of parts.  All models are
frozen so a snapshot can be shared with readers while the next one is built.

Parts form a closed sum: ``TextPart`` and ``ToolPart`` for the variants the
store understands, and ``OpaquePart`` carrying the raw payload of any other
type (reasoning, file, step markers, ...) so unknown variants pass through
untouched.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from sandboxchat.client_state.models.enums import MessageRole, PartType, ToolStatus


class _Frozen(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


# -- Message -----------------------------------------------------------------


class MessageTime(_Frozen):
    created: int | None = None
    completed: int | None = None


class MessageInfo(_Frozen):
    """Immutable message header.  Model metadata (modelID, cost, tokens, ...)
    is kept as extra fields exactly as the server sent it.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    id: str
    session_id: str | None = Field(default=None, alias="sessionID")
    role: str = MessageRole.ASSISTANT
    time: MessageTime = Field(default_factory=MessageTime)


# -- Parts -------------------------------------------------------------------


class _PartBase(_Frozen):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    id: str
    message_id: str = Field(alias="messageID")
    session_id: str | None = Field(default=None, alias="sessionID")


class TextPart(_PartBase):
    type: Literal["text"] = "text"
    text: str = ""


class ToolState(_Frozen):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    status: ToolStatus = ToolStatus.PENDING
    input: dict[str, Any] = Field(default_factory=dict)
    output: str | None = None
    error: str | None = None
    title: str | None = None


class ToolPart(_PartBase):
    type: Literal["tool"] = "tool"
    tool: str = ""
    call_id: str | None = Field(default=None, alias="callID")
    state: ToolState = Field(default_factory=ToolState)


class OpaquePart(_PartBase):
    """Any part type the store does not interpret; ``raw`` is the full payload."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    type: str
    raw: dict[str, Any] = Field(default_factory=dict)


Part = TextPart | ToolPart | OpaquePart

_PART_MODELS: dict[str, type[TextPart] | type[ToolPart]] = {
    PartType.TEXT: TextPart,
    PartType.TOOL: ToolPart,
}


def parse_part(data: dict[str, Any]) -> Part:
    """Build a typed part from a wire payload.

    Raises ``pydantic.ValidationError`` when the payload lacks ``id`` or
    ``messageID``.
    """
    model = _PART_MODELS.get(data.get("type", ""))
    if model is not None:
        return model.model_validate(data)
    return OpaquePart.model_validate({**data, "type": str(data.get("type", "")), "raw": data})


# -- Snapshot ----------------------------------------------------------------


class MessageWithParts(_Frozen):
    info: MessageInfo
    parts: tuple[Part, ...] = ()

    @property
    def id(self) -> str:
        return self.info.id

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> MessageWithParts:
        """Parse the ``{info, parts}`` shape returned by the session messages endpoint."""
        info = MessageInfo.model_validate(data["info"])
        parts = tuple(parse_part(p) for p in data.get("parts") or [])
        return cls(info=info, parts=parts)


Snapshot = tuple[MessageWithParts, ...]
"""Complete, immutable state of one conversation.  Order is insertion order."""

EMPTY_SNAPSHOT: Snapshot = ()


# -- Type guards -------------------------------------------------------------


def is_user_message(info: MessageInfo) -> bool:
    return info.role == MessageRole.USER


def is_assistant_message(info: MessageInfo) -> bool:
    return info.role == MessageRole.ASSISTANT


def is_text_part(part: Part) -> bool:
    return isinstance(part, TextPart)


def is_tool_part(part: Part) -> bool:
    return isinstance(part, ToolPart)
