"""Live event models.

The workspace's agent server pushes ``{"type": ..., "properties": {...}}``
envelopes over SSE.  ``parse_event`` turns one envelope into a typed event for
the types the driver acts on; everything else becomes an ``OpaqueEvent``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sandboxchat.client_state.models.conversation import MessageInfo, Part, parse_part
from sandboxchat.client_state.models.enums import EventType


class LiveEvent(BaseModel):
    """Base envelope.  ``session_id`` is ``None`` for server-wide events."""

    model_config = ConfigDict(frozen=True)

    type: str
    session_id: str | None = None


class MessageUpdated(LiveEvent):
    info: MessageInfo


class MessagePartUpdated(LiveEvent):
    part: Part


class MessageRemoved(LiveEvent):
    message_id: str


class MessagePartRemoved(LiveEvent):
    message_id: str
    part_id: str


class SessionUpdated(LiveEvent):
    info: dict[str, Any] = Field(default_factory=dict)


class SessionIdle(LiveEvent):
    pass


class SessionError(LiveEvent):
    error: dict[str, Any] | str | None = None


class ServerConnected(LiveEvent):
    pass


class OpaqueEvent(LiveEvent):
    properties: dict[str, Any] = Field(default_factory=dict)


def parse_event(data: dict[str, Any]) -> LiveEvent:
    """Build a typed event from a wire envelope.

    Raises ``pydantic.ValidationError`` (or ``KeyError``) when a known event
    type carries a malformed payload.
    """
    event_type = str(data.get("type", ""))
    props: dict[str, Any] = data.get("properties") or {}

    if event_type == EventType.MESSAGE_UPDATED:
        info = MessageInfo.model_validate(props["info"])
        return MessageUpdated(type=event_type, session_id=info.session_id, info=info)

    if event_type == EventType.MESSAGE_PART_UPDATED:
        part = parse_part(props["part"])
        return MessagePartUpdated(type=event_type, session_id=part.session_id, part=part)

    if event_type == EventType.MESSAGE_REMOVED:
        return MessageRemoved(type=event_type, session_id=props.get("sessionID"), message_id=props["messageID"])

    if event_type == EventType.MESSAGE_PART_REMOVED:
        return MessagePartRemoved(
            type=event_type,
            session_id=props.get("sessionID"),
            message_id=props["messageID"],
            part_id=props["partID"],
        )

    if event_type == EventType.SESSION_UPDATED:
        info = props.get("info") or {}
        return SessionUpdated(type=event_type, session_id=info.get("id"), info=info)

    if event_type == EventType.SESSION_IDLE:
        return SessionIdle(type=event_type, session_id=props.get("sessionID"))

    if event_type == EventType.SESSION_ERROR:
        return SessionError(type=event_type, session_id=props.get("sessionID"), error=props.get("error"))

    if event_type == EventType.SERVER_CONNECTED:
        return ServerConnected(type=event_type)

    return OpaqueEvent(type=event_type, session_id=props.get("sessionID"), properties=props)


def is_event_for_session(event: LiveEvent, session_id: str | None) -> bool:
    """True when no session filter is set or the event is unscoped or matches."""
    if not session_id:
        return True
    return event.session_id is None or event.session_id == session_id
