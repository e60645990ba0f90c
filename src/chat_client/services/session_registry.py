from __future__ import annotations

import logging
from typing import Callable

from chat_client.application.exceptions import NotFoundError
from chat_client.services.conversation_session import ConversationSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], ConversationSession]


class SessionRegistry:
    """Exactly one ConversationSession per UI-visible key."""

    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory
        self._sessions: dict[str, ConversationSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get_or_create(self, key: str) -> ConversationSession:
        session = self._sessions.get(key)
        if session is None:
            session = self._factory()
            self._sessions[key] = session
            logger.debug("Created session %s (total=%d)", key, len(self._sessions))
        return session

    def get(self, key: str) -> ConversationSession:
        session = self._sessions.get(key)
        if session is None:
            raise NotFoundError(f"Session {key} not found")
        return session

    async def close(self, key: str) -> None:
        session = self._sessions.pop(key, None)
        if session is None:
            raise NotFoundError(f"Session {key} not found")
        await session.close()

    async def aclose(self) -> None:
        sessions, self._sessions = self._sessions, {}
        for session in sessions.values():
            await session.close()
        logger.info("Closed %d sessions", len(sessions))
