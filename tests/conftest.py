"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import pytest

from chat_client.application.exceptions import AppError, NetworkFailure
from chat_client.domain.entities.message import Message
from chat_client.domain.entities.profile import Profile
from chat_client.domain.events.message_changes import RealtimeEvent
from chat_client.services.conversation_session import ConversationSession


def make_message(
    message_id: str = "m1",
    *,
    conversation_id: str = "c1",
    author_id: str = "u1",
    content: str = "hello",
    created_at_ms: int = 1000,
    author_display_name: str = "",
    **extra: Any,
) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        author_id=author_id,
        author_display_name=author_display_name,
        content=content,
        created_at_ms=created_at_ms,
        **extra,
    )


def make_history(count: int, *, conversation_id: str = "c1", start_ms: int = 1000) -> list[Message]:
    return [
        make_message(
            f"{conversation_id}-h{i}",
            conversation_id=conversation_id,
            content=f"message {i}",
            created_at_ms=start_ms + i * 10,
        )
        for i in range(count)
    ]


async def drain(rounds: int = 20) -> None:
    """Let background tasks (subscription loops, name lookups) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@dataclass
class FakeClock:
    now: int = 1000

    def now_ms(self) -> int:
        return self.now


@dataclass
class FakeBackend:
    """In-memory MessageBackend.

    ``fetch_gates`` / ``send_gate`` hold a call until the test sets the event,
    which lets a test interleave completions with other operations.
    """

    messages: dict[str, list[Message]] = field(default_factory=dict)
    fetch_error: AppError | None = None
    send_errors: list[AppError] = field(default_factory=list)
    fetch_gates: dict[str, asyncio.Event] = field(default_factory=dict)
    send_gate: asyncio.Event | None = None
    server_time_ms: int | None = None
    muted: set[tuple[str, str]] = field(default_factory=set)
    mute_error: AppError | None = None
    mute_gate: asyncio.Event | None = None
    fetch_calls: list[tuple[str, int | None, int]] = field(default_factory=list)
    send_calls: list[tuple[str, str, str, str | None]] = field(default_factory=list)
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    async def fetch_messages(
        self,
        conversation_id: str,
        *,
        before_ms: int | None = None,
        limit: int = 50,
    ) -> list[Message]:
        self.fetch_calls.append((conversation_id, before_ms, limit))
        gate = self.fetch_gates.get(conversation_id)
        if gate is not None:
            await gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        rows = [
            m for m in self.messages.get(conversation_id, [])
            if before_ms is None or m.created_at_ms < before_ms
        ]
        rows.sort(key=lambda m: m.created_at_ms)
        return rows[-limit:]

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        author_id: str,
        *,
        reply_to_id: str | None = None,
    ) -> Message:
        self.send_calls.append((conversation_id, content, author_id, reply_to_id))
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_errors:
            raise self.send_errors.pop(0)
        message = make_message(
            f"srv-{next(self._ids)}",
            conversation_id=conversation_id,
            author_id=author_id,
            content=content,
            created_at_ms=self.server_time_ms if self.server_time_ms is not None else 1000,
            reply_to_id=reply_to_id,
        )
        self.messages.setdefault(conversation_id, []).append(message)
        return message

    async def fetch_mute_status(self, conversation_id: str, user_id: str) -> bool:
        if self.mute_gate is not None:
            await self.mute_gate.wait()
        if self.mute_error is not None:
            raise self.mute_error
        return (conversation_id, user_id) in self.muted


class FakeFeed:
    """RealtimeFeed backed by a queue. Queued exceptions are raised to the reader."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self.closed = False
        self._queue: asyncio.Queue[RealtimeEvent | BaseException | None] = asyncio.Queue()

    def __aiter__(self) -> AsyncIterator[RealtimeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[RealtimeEvent]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    def push(self, change: RealtimeEvent) -> None:
        self._queue.put_nowait(change)

    def drop(self, exc: BaseException | None = None) -> None:
        self._queue.put_nowait(exc or NetworkFailure("connection reset"))

    def end(self) -> None:
        self._queue.put_nowait(None)

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeTransport:
    """RealtimeTransport handing out FakeFeeds. ``connect_errors`` are raised first."""

    feeds: list[FakeFeed] = field(default_factory=list)
    connect_errors: list[AppError] = field(default_factory=list)
    connect_calls: list[str] = field(default_factory=list)

    async def connect(self, conversation_id: str) -> FakeFeed:
        self.connect_calls.append(conversation_id)
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        feed = FakeFeed(conversation_id)
        self.feeds.append(feed)
        return feed

    def latest(self, conversation_id: str | None = None) -> FakeFeed:
        for feed in reversed(self.feeds):
            if conversation_id is None or feed.conversation_id == conversation_id:
                return feed
        raise LookupError(conversation_id)


@dataclass
class FakeProfileSource:
    profiles: dict[str, Profile] = field(default_factory=dict)
    error: AppError | None = None
    calls: list[list[str]] = field(default_factory=list)

    async def fetch_profiles(self, user_ids: list[str]) -> list[Profile]:
        self.calls.append(list(user_ids))
        if self.error is not None:
            raise self.error
        return [self.profiles[uid] for uid in user_ids if uid in self.profiles]


@dataclass
class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and only yields once."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_session(backend, transport, clock, sleep):
    def _make(**kwargs: Any) -> ConversationSession:
        kwargs.setdefault("page_size", 50)
        return ConversationSession(backend, transport, clock=clock, sleep=sleep, **kwargs)

    return _make
