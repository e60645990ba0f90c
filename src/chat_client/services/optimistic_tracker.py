"""Pending-send bookkeeping and reconciliation against server messages."""
from __future__ import annotations

import logging
from typing import Callable

from chat_client.domain.entities.message import Message, PendingMessage
from chat_client.domain.value_objects.enums import ErrorKind, PendingState
from chat_client.domain.value_objects.ids import new_temp_id
from chat_client.services.message_store import MessageStore

logger = logging.getLogger(__name__)

DEFAULT_ECHO_TOLERANCE_MS = 15_000


class OptimisticMessageTracker:
    """Tracks locally created messages until the server confirms them.

    Every confirmation path (send response, realtime echo, fresh fetch) removes
    the pending entry and upserts the server message in the same synchronous
    step, so a message is never visible twice.
    """

    def __init__(
        self,
        store: MessageStore,
        *,
        echo_tolerance_ms: int = DEFAULT_ECHO_TOLERANCE_MS,
        id_factory: Callable[[], str] = new_temp_id,
    ) -> None:
        self._store = store
        self._echo_tolerance_ms = echo_tolerance_ms
        self._id_factory = id_factory
        self._pending: dict[str, PendingMessage] = {}
        self._issued: set[str] = set()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, temp_id: object) -> bool:
        return temp_id in self._pending

    def get(self, temp_id: str) -> PendingMessage | None:
        return self._pending.get(temp_id)

    def entries(self) -> list[PendingMessage]:
        return sorted(self._pending.values(), key=lambda p: p.created_at_ms)

    def begin_send(
        self,
        content: str,
        author_id: str,
        client_clock_ms: int,
        *,
        reply_to_id: str | None = None,
    ) -> str:
        temp_id = self._id_factory()
        while temp_id in self._issued or self._store.contains(temp_id):
            temp_id = self._id_factory()
        self._issued.add(temp_id)
        self._pending[temp_id] = PendingMessage(
            temp_id=temp_id,
            conversation_id=self._store.conversation_id,
            content=content,
            author_id=author_id,
            created_at_ms=client_clock_ms,
            reply_to_id=reply_to_id,
        )
        return temp_id

    def confirm(self, temp_id: str, server_message: Message) -> bool:
        """Replace a pending entry with its server message.

        Unknown temp ids (already resolved or discarded) are a no-op.
        """
        if self._pending.pop(temp_id, None) is None:
            return False
        result = self._store.upsert(server_message)
        if not result.ok:
            logger.warning("Confirmed message rejected by store: %s", result.detail)
        return True

    def fail(self, temp_id: str, reason: str, kind: ErrorKind | None = None) -> bool:
        pending = self._pending.get(temp_id)
        if pending is None:
            return False
        pending.state = PendingState.FAILED
        pending.error_detail = reason
        pending.error_kind = kind
        return True

    def mark_retrying(self, temp_id: str) -> PendingMessage | None:
        """Move a Failed entry back to Pending, keeping its temp id."""
        pending = self._pending.get(temp_id)
        if pending is None or pending.state != PendingState.FAILED:
            return None
        pending.state = PendingState.PENDING
        pending.error_detail = None
        pending.error_kind = None
        return pending

    def discard(self, temp_id: str) -> bool:
        return self._pending.pop(temp_id, None) is not None

    def reconcile_incoming(self, server_message: Message) -> str | None:
        """Apply a server message, resolving the pending send it echoes.

        Returns the matched temp id, or ``None`` when the message is simply new
        (or already known by id) and was upserted directly.
        """
        matched: str | None = None
        if not self._store.contains(server_message.id):
            matched = self._find_echo(server_message)

        if matched is not None:
            del self._pending[matched]
            logger.debug("Message %s matched pending %s", server_message.id, matched)

        result = self._store.upsert(server_message)
        if not result.ok:
            logger.warning("Incoming message rejected by store: %s", result.detail)
        return matched

    def resolve_echoes(self, loaded: list[Message]) -> list[str]:
        """Drop pending entries echoed by a batch already loaded into the store."""
        matched: list[str] = []
        for message in loaded:
            temp_id = self._find_echo(message)
            if temp_id is not None:
                del self._pending[temp_id]
                matched.append(temp_id)
        return matched

    def adopt(self, pending: PendingMessage) -> None:
        """Carry an entry over from a previous tracker (used on refetch)."""
        pending.conversation_id = self._store.conversation_id
        self._pending[pending.temp_id] = pending
        self._issued.add(pending.temp_id)

    def clear(self) -> None:
        self._pending.clear()

    def _find_echo(self, message: Message) -> str | None:
        # Failed sends may still have reached the server (e.g. a timeout), so
        # they are candidates too. Pending entries are tried first.
        content = message.content.strip()
        candidates = sorted(self.entries(), key=lambda p: p.state != PendingState.PENDING)
        for pending in candidates:
            if pending.author_id != message.author_id:
                continue
            if pending.content.strip() != content:
                continue
            if abs(pending.created_at_ms - message.created_at_ms) <= self._echo_tolerance_ms:
                return pending.temp_id
        return None
