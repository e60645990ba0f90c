from __future__ import annotations

from typing import AsyncIterator, Protocol

from chat_client.domain.events.message_changes import RealtimeEvent


class RealtimeFeed(Protocol):
    """One live connection. Iteration ends or raises when the connection drops."""

    def __aiter__(self) -> AsyncIterator[RealtimeEvent]: ...

    async def close(self) -> None: ...


class RealtimeTransport(Protocol):
    async def connect(self, conversation_id: str) -> RealtimeFeed:
        """Open a feed of message and mute row changes for one conversation.

        Raises ``NetworkFailure`` for transient errors and ``AuthExpired``
        when the backend rejects the subscription.
        """
        ...
