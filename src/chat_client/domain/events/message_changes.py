"""Row-change events delivered by a realtime subscription."""
from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class MessageInserted:
    message: Message


@dataclass(frozen=True, slots=True)
class MessageUpdated:
    message: Message


@dataclass(frozen=True, slots=True)
class MessageDeleted:
    message_id: str
    conversation_id: str | None = None


MessageChange = MessageInserted | MessageUpdated | MessageDeleted


@dataclass(frozen=True, slots=True)
class MuteChanged:
    """A ``muted_users`` row for ``user_id`` appeared (muted) or went away."""

    user_id: str
    conversation_id: str | None
    muted: bool


RealtimeEvent = MessageChange | MuteChanged
