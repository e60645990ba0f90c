"""Owns the single live realtime subscription of a conversation session."""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Awaitable, Callable

from chat_client.application.exceptions import AppError, AuthExpired
from chat_client.application.ports.realtime import RealtimeFeed, RealtimeTransport
from chat_client.domain.entities.message import Message
from chat_client.domain.events.message_changes import (
    MessageDeleted,
    MessageInserted,
    MessageUpdated,
    MuteChanged,
    RealtimeEvent,
)
from chat_client.domain.value_objects.enums import ConnectionState

logger = logging.getLogger(__name__)

OnMessage = Callable[[Message], None]
OnDelete = Callable[[str], None]
OnMute = Callable[[str, bool], None]
OnConnectionChange = Callable[[bool], None]
OnError = Callable[[AppError], None]
Sleep = Callable[[float], Awaitable[None]]

_handle_ids = itertools.count(1)


def calc_backoff(attempts: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * (2 ** attempts), max_delay)


class SubscriptionHandle:
    """One subscription bound to one conversation. ``CLOSED`` is terminal."""

    def __init__(
        self,
        conversation_id: str,
        on_insert: OnMessage,
        on_update: OnMessage,
        on_delete: OnDelete,
        on_mute: OnMute | None = None,
    ) -> None:
        self.id = next(_handle_ids)
        self.conversation_id = conversation_id
        self.state = ConnectionState.IDLE
        self.connected_once = False
        self._on_insert = on_insert
        self._on_update = on_update
        self._on_delete = on_delete
        self._on_mute = on_mute
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"<SubscriptionHandle #{self.id} {self.conversation_id} {self.state}>"


class RealtimeSubscriptionManager:
    """Keeps at most one live subscription and drops events from stale ones."""

    def __init__(
        self,
        transport: RealtimeTransport,
        *,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        on_connection_change: OnConnectionChange | None = None,
        on_error: OnError | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._on_connection_change = on_connection_change
        self._on_error = on_error
        self._sleep = sleep
        self._active: SubscriptionHandle | None = None

    @property
    def active(self) -> SubscriptionHandle | None:
        return self._active

    def is_active(self, handle: SubscriptionHandle) -> bool:
        return handle is self._active and not handle.closed

    async def open(
        self,
        conversation_id: str,
        on_insert: OnMessage,
        on_update: OnMessage,
        on_delete: OnDelete,
        on_mute: OnMute | None = None,
    ) -> SubscriptionHandle:
        if self._active is not None:
            await self.close(self._active)

        handle = SubscriptionHandle(conversation_id, on_insert, on_update, on_delete, on_mute)
        self._active = handle
        handle._task = asyncio.create_task(
            self._run(handle), name=f"realtime-{conversation_id}-{handle.id}",
        )
        return handle

    async def close(self, handle: SubscriptionHandle) -> None:
        """Tear down ``handle``. Safe to call more than once."""
        # Flip the flag before awaiting so no event is applied after this point
        handle._closed = True
        was_connected = handle.state == ConnectionState.CONNECTED
        handle.state = ConnectionState.CLOSED
        if handle is self._active:
            self._active = None
            if was_connected:
                self._report_connection(None, False)

        task, handle._task = handle._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def aclose(self) -> None:
        if self._active is not None:
            await self.close(self._active)

    async def _run(self, handle: SubscriptionHandle) -> None:
        attempts = 0
        while not handle.closed:
            handle.state = (
                ConnectionState.RECONNECTING if attempts else ConnectionState.CONNECTING
            )
            feed: RealtimeFeed | None = None
            try:
                feed = await self._transport.connect(handle.conversation_id)
                if handle.closed:
                    return
                handle.state = ConnectionState.CONNECTED
                handle.connected_once = True
                attempts = 0
                logger.info("Realtime connected: conversation=%s", handle.conversation_id)
                self._report_connection(handle, True)

                async for event in feed:
                    self._dispatch(handle, event)
                logger.info("Realtime feed ended: conversation=%s", handle.conversation_id)
            except asyncio.CancelledError:
                raise
            except AuthExpired as exc:
                logger.warning(
                    "Realtime subscription rejected: conversation=%s: %s",
                    handle.conversation_id, exc.detail,
                )
                self._fail_terminally(handle, exc)
                return
            except Exception:
                logger.warning(
                    "Realtime connection lost: conversation=%s",
                    handle.conversation_id, exc_info=True,
                )
            finally:
                if feed is not None:
                    await self._close_feed(feed)

            if handle.closed:
                return
            if handle.state == ConnectionState.CONNECTED:
                self._report_connection(handle, False)
            handle.state = ConnectionState.RECONNECTING
            delay = calc_backoff(attempts, self._base_delay, self._max_delay)
            attempts += 1
            logger.debug(
                "Reconnecting conversation=%s in %.2fs (attempt %d)",
                handle.conversation_id, delay, attempts,
            )
            await self._sleep(delay)

    def _dispatch(self, handle: SubscriptionHandle, event: RealtimeEvent) -> None:
        if not self.is_active(handle):
            logger.debug("Dropping event from superseded subscription %r", handle)
            return
        try:
            if isinstance(event, MessageInserted):
                handle._on_insert(event.message)
            elif isinstance(event, MessageUpdated):
                handle._on_update(event.message)
            elif isinstance(event, MessageDeleted):
                handle._on_delete(event.message_id)
            elif isinstance(event, MuteChanged):
                if handle._on_mute is not None:
                    handle._on_mute(event.user_id, event.muted)
            else:
                logger.debug("Ignoring unknown realtime event: %r", event)
        except Exception:
            logger.exception("Error applying realtime event %r", event)

    def _fail_terminally(self, handle: SubscriptionHandle, exc: AppError) -> None:
        was_connected = handle.state == ConnectionState.CONNECTED
        handle.state = ConnectionState.CLOSED
        handle._closed = True
        if handle is not self._active:
            return
        if was_connected:
            self._report_connection(handle, False)
        if self._on_error is not None:
            self._on_error(exc)

    def _report_connection(self, handle: SubscriptionHandle | None, connected: bool) -> None:
        if handle is not None and handle is not self._active:
            return
        if self._on_connection_change is not None:
            try:
                self._on_connection_change(connected)
            except Exception:
                logger.exception("Connection listener failed")

    async def _close_feed(self, feed: RealtimeFeed) -> None:
        try:
            await feed.close()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.debug("Error closing realtime feed", exc_info=True)
