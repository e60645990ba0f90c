"""Ordered, deduplicated set of confirmed messages for one conversation."""
from __future__ import annotations

import bisect
from typing import Iterable

from chat_client.application.dto.outcome import Outcome
from chat_client.domain.entities.message import Message
from chat_client.domain.value_objects.enums import ErrorKind


def _created_at(message: Message) -> int:
    return message.created_at_ms


class MessageStore:
    """Messages ordered by ``created_at_ms`` ascending, ties by arrival order."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self._messages: list[Message] = []
        self._by_id: dict[str, Message] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def contains(self, message_id: str) -> bool:
        return message_id in self._by_id

    def get(self, message_id: str) -> Message | None:
        return self._by_id.get(message_id)

    def oldest(self) -> Message | None:
        return self._messages[0] if self._messages else None

    def newest(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def load(self, initial_batch: Iterable[Message]) -> Outcome[int]:
        """Replace the whole contents. Later duplicates of an id win."""
        batch = list(initial_batch)
        foreign = [m.id for m in batch if m.conversation_id != self.conversation_id]
        if foreign:
            return Outcome.failure(
                ErrorKind.CONFLICT,
                f"Messages {foreign} belong to another conversation",
            )

        by_id: dict[str, Message] = {}
        for m in batch:
            by_id[m.id] = m
        # dict keeps first-seen position; sorted() is stable on ties
        self._messages = sorted(by_id.values(), key=_created_at)
        self._by_id = by_id
        return Outcome.success(len(self._messages))

    def prepend_older(self, older_batch: Iterable[Message]) -> Outcome[int]:
        """Merge a page of history. Returns how many messages were new."""
        batch = list(older_batch)
        foreign = [m.id for m in batch if m.conversation_id != self.conversation_id]
        if foreign:
            return Outcome.failure(
                ErrorKind.CONFLICT,
                f"Messages {foreign} belong to another conversation",
            )

        added = 0
        for m in batch:
            if m.id in self._by_id:
                continue
            # bisect_left keeps older history ahead of same-millisecond arrivals
            idx = bisect.bisect_left(self._messages, m.created_at_ms, key=_created_at)
            self._messages.insert(idx, m)
            self._by_id[m.id] = m
            added += 1
        return Outcome.success(added)

    def upsert(self, message: Message) -> Outcome[bool]:
        """Insert an unseen id or replace an existing one. Idempotent.

        Returns ``True`` when the message was inserted, ``False`` on replace.
        """
        if message.conversation_id != self.conversation_id:
            return Outcome.failure(
                ErrorKind.CONFLICT,
                f"Message {message.id} belongs to conversation "
                f"{message.conversation_id}, not {self.conversation_id}",
            )

        existing = self._by_id.get(message.id)
        if existing is None:
            idx = bisect.bisect_right(self._messages, message.created_at_ms, key=_created_at)
            self._messages.insert(idx, message)
            self._by_id[message.id] = message
            return Outcome.success(True)

        idx = self._index_of(existing)
        if existing.created_at_ms == message.created_at_ms:
            self._messages[idx] = message
        else:
            del self._messages[idx]
            new_idx = bisect.bisect_right(self._messages, message.created_at_ms, key=_created_at)
            self._messages.insert(new_idx, message)
        self._by_id[message.id] = message
        return Outcome.success(False)

    def remove(self, message_id: str) -> bool:
        existing = self._by_id.pop(message_id, None)
        if existing is None:
            return False
        del self._messages[self._index_of(existing)]
        return True

    def clear(self) -> None:
        self._messages = []
        self._by_id = {}

    def snapshot(self) -> list[Message]:
        return list(self._messages)

    def _index_of(self, message: Message) -> int:
        lo = bisect.bisect_left(self._messages, message.created_at_ms, key=_created_at)
        for idx in range(lo, len(self._messages)):
            if self._messages[idx].id == message.id:
                return idx
        raise LookupError(message.id)
