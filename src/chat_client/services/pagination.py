from __future__ import annotations

import logging
from typing import Awaitable, Callable

from chat_client.application.exceptions import AppError, FetchFailedError
from chat_client.domain.entities.message import Message
from chat_client.services.message_store import MessageStore

logger = logging.getLogger(__name__)

FetchOlder = Callable[[int | None], Awaitable[list[Message]]]


class PaginationCursor:
    """Drives backward history loading for one MessageStore.

    ``has_more`` is a heuristic: a full page means there may be more history,
    a short page means the start of the conversation was reached.
    """

    def __init__(self, store: MessageStore, page_size: int) -> None:
        self._store = store
        self.page_size = page_size
        self.has_more = True
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def initialize(self, batch_size: int, returned_count: int) -> None:
        self.page_size = batch_size
        self.has_more = returned_count == batch_size

    async def load_older(self, fetch_fn: FetchOlder) -> int:
        """Fetch messages older than the oldest loaded one.

        Returns the number of messages added. Concurrent calls while a load is
        running return 0 immediately. Raises ``FetchFailedError`` and leaves
        ``has_more`` untouched when the fetch fails.
        """
        if self._in_flight or not self.has_more:
            return 0
        oldest = self._store.oldest()
        if oldest is None:
            return 0

        self._in_flight = True
        try:
            try:
                batch = await fetch_fn(oldest.created_at_ms)
            except AppError as exc:
                logger.info("Loading older messages failed: %s", exc.detail)
                raise FetchFailedError(exc.detail, cause=exc.kind) from exc
        finally:
            self._in_flight = False

        result = self._store.prepend_older(batch)
        if not result.ok:
            raise FetchFailedError(result.detail, cause=result.error)
        self.has_more = len(batch) == self.page_size
        return result.value or 0
