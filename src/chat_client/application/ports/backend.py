from __future__ import annotations

from typing import Protocol

from chat_client.domain.entities.message import Message
from chat_client.domain.entities.profile import Profile


class MessageBackend(Protocol):
    async def fetch_messages(
        self,
        conversation_id: str,
        *,
        before_ms: int | None = None,
        limit: int = 50,
    ) -> list[Message]:
        """Return up to ``limit`` messages older than ``before_ms``, ascending."""
        ...

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        author_id: str,
        *,
        reply_to_id: str | None = None,
    ) -> Message: ...

    async def fetch_mute_status(self, conversation_id: str, user_id: str) -> bool:
        """Whether ``user_id`` is currently muted in the conversation."""
        ...


class ProfileSource(Protocol):
    async def fetch_profiles(self, user_ids: list[str]) -> list[Profile]: ...
