"""Public contract of the messaging engine for one visible conversation."""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Awaitable, Callable, Coroutine, TypeVar

from chat_client.application.dto.outcome import Outcome
from chat_client.application.exceptions import (
    AppError,
    FetchFailedError,
    NetworkFailure,
    SessionClosedError,
    ValidationError,
)
from chat_client.application.ports.backend import MessageBackend
from chat_client.application.ports.clock import Clock, SystemClock
from chat_client.application.ports.realtime import RealtimeTransport
from chat_client.domain.entities.message import Message, PendingMessage, ViewEntry
from chat_client.domain.events.message_changes import (
    MessageChange,
    MessageDeleted,
    MessageInserted,
    MessageUpdated,
)
from chat_client.domain.value_objects.enums import ErrorKind, SessionState
from chat_client.services.message_store import MessageStore
from chat_client.services.optimistic_tracker import (
    DEFAULT_ECHO_TOLERANCE_MS,
    OptimisticMessageTracker,
)
from chat_client.services.pagination import PaginationCursor
from chat_client.services.profile_cache import ProfileCache
from chat_client.services.subscription_manager import RealtimeSubscriptionManager

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[], None]

_SUPERSEDED = "Conversation was switched before the operation completed"


class ConversationSession:
    """Composes store, tracker, cursor and subscription for the active conversation.

    Every open() starts a new generation with fresh components. Completions
    that belong to an older generation are ignored, so a slow fetch or send
    for a conversation the user already left never touches the current view.
    """

    def __init__(
        self,
        backend: MessageBackend,
        transport: RealtimeTransport,
        *,
        page_size: int = 50,
        request_timeout: float = 30.0,
        echo_tolerance_ms: int = DEFAULT_ECHO_TOLERANCE_MS,
        reconnect_base_delay: float = 0.5,
        reconnect_max_delay: float = 30.0,
        clock: Clock | None = None,
        profiles: ProfileCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._page_size = page_size
        self._request_timeout = request_timeout
        self._echo_tolerance_ms = echo_tolerance_ms
        self._clock = clock or SystemClock()
        self._profiles = profiles
        self._subscriptions = RealtimeSubscriptionManager(
            transport,
            base_delay=reconnect_base_delay,
            max_delay=reconnect_max_delay,
            on_connection_change=self._on_connection_change,
            on_error=self._on_subscription_error,
            sleep=sleep,
        )

        self._state = SessionState.CLOSED
        self._generation = 0
        self._conversation_id: str | None = None
        self._store: MessageStore | None = None
        self._tracker: OptimisticMessageTracker | None = None
        self._cursor: PaginationCursor | None = None
        self._buffered: list[MessageChange] = []
        self._listeners: list[Listener] = []
        self._background: set[asyncio.Task[Any]] = set()
        self._connected = False
        self._connection_dropped = False
        self._viewer_id: str | None = None
        self._muted = False
        self._mute_version = 0
        self.last_error: Outcome[Any] | None = None

    # -- read side ---------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def viewer_id(self) -> str | None:
        return self._viewer_id

    @property
    def muted(self) -> bool:
        """Whether the viewer is muted in the open conversation."""
        return self._muted

    @property
    def has_more(self) -> bool:
        return self._cursor.has_more if self._cursor is not None else False

    @property
    def is_loading_older(self) -> bool:
        return self._cursor.in_flight if self._cursor is not None else False

    def pending(self, temp_id: str) -> PendingMessage | None:
        return self._tracker.get(temp_id) if self._tracker is not None else None

    def view(self) -> list[ViewEntry]:
        """Confirmed and unconfirmed messages, oldest first."""
        if self._store is None or self._tracker is None:
            return []
        entries: list[ViewEntry] = [*self._store.snapshot(), *self._tracker.entries()]
        # sort is stable: on equal timestamps confirmed messages stay first
        entries.sort(key=lambda e: e.created_at_ms)
        return entries

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` after every visible change. Returns an unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -- lifecycle ---------------------------------------------------------

    async def open(self, conversation_id: str, *, viewer_id: str | None = None) -> Outcome[int]:
        """Switch to ``conversation_id`` and load its most recent page.

        With ``viewer_id`` the session also tracks whether that user is muted.
        """
        return await self._open(conversation_id, viewer_id, carry_unconfirmed=False)

    async def refetch(self) -> Outcome[int]:
        """Reload the current conversation, keeping unconfirmed sends visible."""
        if self._conversation_id is None:
            raise SessionClosedError("No conversation is open")
        return await self._open(self._conversation_id, self._viewer_id, carry_unconfirmed=True)

    async def close(self) -> None:
        self._generation += 1
        await self._subscriptions.aclose()
        self._cancel_background()
        self._state = SessionState.CLOSED
        self._conversation_id = None
        self._store = None
        self._tracker = None
        self._cursor = None
        self._buffered = []
        self._connected = False
        self._viewer_id = None
        self._muted = False
        self._notify()

    async def _open(
        self,
        conversation_id: str,
        viewer_id: str | None,
        *,
        carry_unconfirmed: bool,
    ) -> Outcome[int]:
        self._generation += 1
        generation = self._generation
        carried: list[PendingMessage] = []
        if carry_unconfirmed and self._tracker is not None:
            # in-flight sends keep delivering into the new tracker
            carried = self._tracker.entries()

        await self._subscriptions.aclose()
        if generation != self._generation:
            return Outcome.failure(ErrorKind.SUPERSEDED, _SUPERSEDED)

        self._cancel_background()
        store = MessageStore(conversation_id)
        self._store = store
        self._tracker = OptimisticMessageTracker(store, echo_tolerance_ms=self._echo_tolerance_ms)
        for entry in carried:
            self._tracker.adopt(entry)
        self._cursor = PaginationCursor(store, self._page_size)
        self._conversation_id = conversation_id
        self._buffered = []
        self._connected = False
        self._connection_dropped = False
        self._viewer_id = viewer_id
        self._muted = False
        self.last_error = None
        self._state = SessionState.OPENING
        logger.info("Opening conversation %s (generation %d)", conversation_id, generation)
        self._notify()

        # Subscribe before fetching; events seen while Opening are buffered
        await self._subscriptions.open(
            conversation_id,
            on_insert=lambda m: self._on_change(generation, MessageInserted(m)),
            on_update=lambda m: self._on_change(generation, MessageUpdated(m)),
            on_delete=lambda mid: self._on_change(generation, MessageDeleted(mid, conversation_id)),
            on_mute=lambda uid, muted: self._on_mute(generation, uid, muted),
        )
        if generation != self._generation:
            return Outcome.failure(ErrorKind.SUPERSEDED, _SUPERSEDED)
        if viewer_id is not None:
            self._spawn(self._load_mute_status(generation, conversation_id, viewer_id))

        try:
            batch = await self._call(
                self._backend.fetch_messages(conversation_id, before_ms=None, limit=self._page_size)
            )
        except AppError as exc:
            if generation != self._generation:
                return Outcome.failure(ErrorKind.SUPERSEDED, _SUPERSEDED)
            logger.warning("Initial fetch for %s failed: %s", conversation_id, exc.detail)
            self.last_error = Outcome.from_error(exc)
            self._activate()
            return self.last_error

        if generation != self._generation:
            return Outcome.failure(ErrorKind.SUPERSEDED, _SUPERSEDED)

        loaded = store.load(batch)
        if not loaded.ok:
            logger.warning("Discarding initial page for %s: %s", conversation_id, loaded.detail)
            self.last_error = Outcome.failure(ErrorKind.MALFORMED_SERVER_DATA, loaded.detail)
            self._activate()
            return self.last_error

        assert self._tracker is not None and self._cursor is not None
        self._tracker.resolve_echoes(batch)
        self._cursor.initialize(self._page_size, len(batch))
        self._activate()
        self._fill_author_names(generation, batch)
        return Outcome.success(len(batch))

    def _activate(self) -> None:
        self._state = SessionState.ACTIVE
        buffered, self._buffered = self._buffered, []
        for change in buffered:
            self._apply_change(change)
        self._notify()

    # -- sending -----------------------------------------------------------

    async def send(
        self,
        content: str,
        author_id: str,
        *,
        reply_to_id: str | None = None,
    ) -> tuple[str, Outcome[Message]]:
        """Show ``content`` immediately as pending, deliver it, reconcile.

        Returns the temp id and the delivery outcome. On success the entry is
        replaced by the server message, on failure it stays in the view
        flagged Failed.
        """
        tracker = self._require_tracker()
        if not content.strip():
            raise ValidationError("Message content is empty")

        temp_id = tracker.begin_send(
            content, author_id, self._clock.now_ms(), reply_to_id=reply_to_id,
        )
        self._notify()
        return temp_id, await self._deliver(temp_id)

    async def retry(self, temp_id: str) -> Outcome[Message]:
        """Re-send a Failed entry under the same temp id."""
        tracker = self._require_tracker()
        if tracker.mark_retrying(temp_id) is None:
            return Outcome.failure(ErrorKind.NOT_FOUND, f"No failed message {temp_id}")
        self._notify()
        return await self._deliver(temp_id)

    def discard(self, temp_id: str) -> bool:
        """Remove a Pending or Failed entry. A late confirmation is then ignored."""
        if self._tracker is None or not self._tracker.discard(temp_id):
            return False
        self._notify()
        return True

    async def _deliver(self, temp_id: str) -> Outcome[Message]:
        generation = self._generation
        pending = self.pending(temp_id)
        if pending is None:
            return Outcome.failure(ErrorKind.NOT_FOUND, f"No pending message {temp_id}")
        pending.attempts += 1

        try:
            message = await self._call(
                self._backend.send_message(
                    pending.conversation_id,
                    pending.content,
                    pending.author_id,
                    reply_to_id=pending.reply_to_id,
                )
            )
        except AppError as exc:
            # refetch() may have moved the entry to a new tracker meanwhile
            tracker = self._tracker_holding(temp_id)
            if tracker is None:
                return self._detached(generation, Outcome.from_error(exc))
            logger.info("Send of %s failed: %s", temp_id, exc.detail)
            tracker.fail(temp_id, exc.detail or exc.kind.value, exc.kind)
            self._notify()
            return Outcome.from_error(exc)

        tracker = self._tracker_holding(temp_id)
        if tracker is None:
            # resolved by an echo or a fresh fetch, discarded, or superseded
            if (
                self._store is not None
                and self._conversation_id == pending.conversation_id
                and self._store.contains(message.id)
            ):
                return Outcome.success(self._store.get(message.id))
            return self._detached(generation, Outcome.success(message))
        message = self._with_author_name(self._generation, message)
        tracker.confirm(temp_id, message)
        self._notify()
        return Outcome.success(message)

    def _tracker_holding(self, temp_id: str) -> OptimisticMessageTracker | None:
        if self._tracker is not None and temp_id in self._tracker:
            return self._tracker
        return None

    def _detached(self, generation: int, outcome: Outcome[Message]) -> Outcome[Message]:
        """Outcome of a send whose entry is no longer in the current view."""
        if generation != self._generation:
            return Outcome.failure(ErrorKind.SUPERSEDED, _SUPERSEDED)
        return outcome

    # -- history -----------------------------------------------------------

    async def load_older(self) -> Outcome[int]:
        if self._cursor is None or self._conversation_id is None:
            return Outcome.failure(ErrorKind.SESSION_CLOSED, "No conversation is open")

        generation = self._generation
        cursor = self._cursor
        conversation_id = self._conversation_id

        async def _fetch(before_ms: int | None) -> list[Message]:
            return await self._call(
                self._backend.fetch_messages(
                    conversation_id, before_ms=before_ms, limit=cursor.page_size,
                )
            )

        try:
            added = await cursor.load_older(_fetch)
        except FetchFailedError as exc:
            if generation != self._generation:
                return Outcome.failure(ErrorKind.SUPERSEDED, _SUPERSEDED)
            self.last_error = Outcome.from_error(exc)
            self._notify()
            return self.last_error

        if generation != self._generation:
            return Outcome.failure(ErrorKind.SUPERSEDED, _SUPERSEDED)
        if added:
            self._notify()
            assert self._store is not None
            self._fill_author_names(generation, self._store.snapshot())
        return Outcome.success(added)

    # -- realtime ----------------------------------------------------------

    def _on_change(self, generation: int, change: MessageChange) -> None:
        if generation != self._generation:
            return
        if self._state == SessionState.OPENING:
            self._buffered.append(change)
            return
        if self._apply_change(change):
            self._notify()

    def _apply_change(self, change: MessageChange) -> bool:
        if self._store is None or self._tracker is None:
            return False

        if isinstance(change, MessageDeleted):
            return self._store.remove(change.message_id)

        message = change.message
        if message.conversation_id != self._conversation_id:
            logger.warning(
                "Dropping message %s for conversation %s while %s is open",
                message.id, message.conversation_id, self._conversation_id,
            )
            return False

        existing = self._store.get(message.id)
        if existing is not None and not message.author_display_name:
            message = dataclasses.replace(message, author_display_name=existing.author_display_name)
        message = self._with_author_name(self._generation, message)

        if isinstance(change, MessageInserted):
            self._tracker.reconcile_incoming(message)
            return True
        return self._store.upsert(message).ok

    def _on_connection_change(self, connected: bool) -> None:
        if self._state == SessionState.CLOSED:
            return
        self._connected = connected
        if not connected:
            self._connection_dropped = True
        elif self._connection_dropped:
            self._connection_dropped = False
            self._spawn(self._resync(self._generation))
        self._notify()

    def _on_subscription_error(self, exc: AppError) -> None:
        logger.warning("Realtime updates stopped for %s: %s", self._conversation_id, exc.detail)
        self._connected = False
        self.last_error = Outcome.from_error(exc)
        self._notify()

    async def _resync(self, generation: int) -> None:
        """Fetch the latest page after a reconnect to pick up missed messages."""
        conversation_id = self._conversation_id
        if conversation_id is None:
            return
        try:
            batch = await self._call(
                self._backend.fetch_messages(conversation_id, before_ms=None, limit=self._page_size)
            )
        except AppError as exc:
            logger.warning("Resync of %s failed: %s", conversation_id, exc.detail)
            return
        if generation != self._generation:
            return
        changed = False
        for message in batch:
            changed = self._apply_change(MessageInserted(message)) or changed
        if changed:
            self._notify()

    # -- mute status -------------------------------------------------------

    def _on_mute(self, generation: int, user_id: str, muted: bool) -> None:
        if generation != self._generation or user_id != self._viewer_id:
            return
        self._mute_version += 1
        self._set_muted(muted)

    async def _load_mute_status(self, generation: int, conversation_id: str, viewer_id: str) -> None:
        version = self._mute_version
        try:
            muted = await self._call(self._backend.fetch_mute_status(conversation_id, viewer_id))
        except AppError as exc:
            logger.warning("Mute status for %s unavailable: %s", conversation_id, exc.detail)
            return
        # a realtime mute change seen meanwhile is newer than this answer
        if generation != self._generation or version != self._mute_version:
            return
        self._set_muted(muted)

    def _set_muted(self, muted: bool) -> None:
        if muted != self._muted:
            self._muted = muted
            self._notify()

    # -- author names ------------------------------------------------------

    def _with_author_name(self, generation: int, message: Message) -> Message:
        if message.author_display_name or self._profiles is None:
            return message
        cached = self._profiles.get_cached(message.author_id)
        if cached is not None:
            return dataclasses.replace(message, author_display_name=cached)
        self._spawn(self._resolve_authors(generation, [message.author_id]))
        return message

    def _fill_author_names(self, generation: int, messages: list[Message]) -> None:
        if self._profiles is None:
            return
        missing = [m.author_id for m in messages if not m.author_display_name]
        if missing:
            self._spawn(self._resolve_authors(generation, missing))

    async def _resolve_authors(self, generation: int, user_ids: list[str]) -> None:
        assert self._profiles is not None
        names = await self._profiles.prefetch(user_ids)
        if generation != self._generation or self._store is None or not names:
            return
        changed = False
        for message in self._store.snapshot():
            name = names.get(message.author_id)
            if name and not message.author_display_name:
                self._store.upsert(dataclasses.replace(message, author_display_name=name))
                changed = True
        if changed:
            self._notify()

    # -- helpers -----------------------------------------------------------

    async def _call(self, awaitable: Coroutine[Any, Any, T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._request_timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkFailure(
                f"Request timed out after {self._request_timeout:g}s"
            ) from exc

    def _require_tracker(self) -> OptimisticMessageTracker:
        if self._state == SessionState.CLOSED or self._tracker is None:
            raise SessionClosedError("No conversation is open")
        return self._tracker

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _cancel_background(self) -> None:
        for task in list(self._background):
            task.cancel()
        self._background.clear()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("View listener failed")
