"""Conversation snapshot operations.

Pure functions that apply one live event to an immutable snapshot and return
the next snapshot.  None of them mutate their input and none of them raise:
a part for an unknown message, or a removal of something already gone, is a
no-op and the input snapshot is returned as-is.

Position is insertion order.  Updating an existing message or part replaces it
where it stands.
"""

from __future__ import annotations

from sandboxchat.client_state.models.conversation import (
    MessageInfo,
    MessageWithParts,
    Part,
    Snapshot,
    TextPart,
    ToolPart,
)


def _index_of(snapshot: Snapshot, message_id: str) -> int:
    for i, message in enumerate(snapshot):
        if message.info.id == message_id:
            return i
    return -1


def _replace_at(snapshot: Snapshot, index: int, message: MessageWithParts) -> Snapshot:
    return (*snapshot[:index], message, *snapshot[index + 1 :])


# -- Upsert ------------------------------------------------------------------


def upsert_message(snapshot: Snapshot, info: MessageInfo) -> Snapshot:
    """Replace the info of an existing message in place, else append a new message with no parts."""
    index = _index_of(snapshot, info.id)
    if index == -1:
        return (*snapshot, MessageWithParts(info=info))
    existing = snapshot[index]
    return _replace_at(snapshot, index, existing.model_copy(update={"info": info}))


def upsert_message_part(snapshot: Snapshot, part: Part) -> Snapshot:
    """Replace or append ``part`` within the message named by ``part.message_id``.

    Orphan parts (owning message not in the snapshot) are dropped.
    """
    index = _index_of(snapshot, part.message_id)
    if index == -1:
        return snapshot

    message = snapshot[index]
    parts = message.parts
    for i, existing in enumerate(parts):
        if existing.id == part.id:
            parts = (*parts[:i], part, *parts[i + 1 :])
            break
    else:
        parts = (*parts, part)
    return _replace_at(snapshot, index, message.model_copy(update={"parts": parts}))


# -- Remove ------------------------------------------------------------------


def remove_message(snapshot: Snapshot, message_id: str) -> Snapshot:
    if _index_of(snapshot, message_id) == -1:
        return snapshot
    return tuple(m for m in snapshot if m.info.id != message_id)


def remove_message_part(snapshot: Snapshot, part_id: str, message_id: str) -> Snapshot:
    index = _index_of(snapshot, message_id)
    if index == -1:
        return snapshot
    message = snapshot[index]
    if not any(p.id == part_id for p in message.parts):
        return snapshot
    parts = tuple(p for p in message.parts if p.id != part_id)
    return _replace_at(snapshot, index, message.model_copy(update={"parts": parts}))


# -- Derived views -----------------------------------------------------------


def get_message_text(message: MessageWithParts) -> list[str]:
    """Non-empty text payloads in part order."""
    return [p.text for p in message.parts if isinstance(p, TextPart) and p.text]


def get_message_tools(message: MessageWithParts) -> list[ToolPart]:
    return [p for p in message.parts if isinstance(p, ToolPart)]


def has_text_content(message: MessageWithParts) -> bool:
    return any(isinstance(p, TextPart) and p.text for p in message.parts)


def find_message(snapshot: Snapshot, message_id: str) -> MessageWithParts | None:
    index = _index_of(snapshot, message_id)
    return snapshot[index] if index != -1 else None
