from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.value_objects.enums import ErrorKind, PendingState


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    conversation_id: str
    author_id: str
    author_display_name: str
    content: str
    created_at_ms: int
    edited: bool = False
    edited_content: str | None = None
    reply_to_id: str | None = None

    @property
    def display_content(self) -> str:
        if self.edited and self.edited_content is not None:
            return self.edited_content
        return self.content


@dataclass(slots=True)
class PendingMessage:
    """Locally created message awaiting server confirmation. Never persisted."""

    temp_id: str
    conversation_id: str
    content: str
    author_id: str
    created_at_ms: int
    state: PendingState = PendingState.PENDING
    error_detail: str | None = None
    error_kind: ErrorKind | None = None
    reply_to_id: str | None = None
    attempts: int = 0

    @property
    def is_failed(self) -> bool:
        return self.state == PendingState.FAILED


ViewEntry = Message | PendingMessage
