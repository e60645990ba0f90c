from __future__ import annotations

import asyncio

import pytest

from chat_client.application.exceptions import (
    AuthExpired,
    NetworkFailure,
    SessionClosedError,
    ValidationError,
)
from chat_client.domain.entities.message import Message, PendingMessage
from chat_client.domain.entities.profile import Profile
from chat_client.domain.events.message_changes import (
    MessageDeleted,
    MessageInserted,
    MessageUpdated,
    MuteChanged,
)
from chat_client.domain.value_objects.enums import ErrorKind, PendingState, SessionState
from chat_client.services.profile_cache import ProfileCache
from tests.conftest import FakeProfileSource, drain, make_history, make_message


def _confirmed_ids(session) -> list[str]:
    return [e.id for e in session.view() if isinstance(e, Message)]


def _pending(session) -> list[PendingMessage]:
    return [e for e in session.view() if isinstance(e, PendingMessage)]


@pytest.mark.asyncio
async def test_basic_round_trip(make_session, backend):
    session = make_session()
    backend.send_gate = asyncio.Event()

    outcome = await session.open("c1")
    assert outcome.ok
    assert outcome.value == 0
    assert session.state == SessionState.ACTIVE

    task = asyncio.create_task(session.send("hello", "u1"))
    await drain()

    [pending] = session.view()
    assert isinstance(pending, PendingMessage)
    assert pending.content == "hello"
    assert pending.state == PendingState.PENDING

    backend.send_gate.set()
    temp_id, outcome = await task

    assert outcome.ok
    view = session.view()
    assert len(view) == 1
    assert isinstance(view[0], Message)
    assert view[0].id == "srv-1"
    assert view[0].content == "hello"
    assert session.pending(temp_id) is None

    await session.close()


@pytest.mark.asyncio
async def test_failed_send_then_retry_keeps_temp_id(make_session, backend):
    session = make_session()
    backend.send_errors = [NetworkFailure("connection reset")]
    await session.open("c1")

    temp_id, _ = await session.send("hello", "u1")

    [failed] = session.view()
    assert isinstance(failed, PendingMessage)
    assert failed.temp_id == temp_id
    assert failed.is_failed
    assert failed.error_kind == ErrorKind.NETWORK_FAILURE

    outcome = await session.retry(temp_id)

    assert outcome.ok
    assert outcome.value.id == "srv-1"
    assert _confirmed_ids(session) == ["srv-1"]
    assert _pending(session) == []
    assert len(backend.send_calls) == 2

    await session.close()


@pytest.mark.asyncio
async def test_retry_requires_failed_entry(make_session):
    session = make_session()
    await session.open("c1")

    outcome = await session.retry("pending-missing")

    assert outcome.error == ErrorKind.NOT_FOUND
    await session.close()


@pytest.mark.asyncio
async def test_echo_before_send_response_is_not_duplicated(make_session, backend, transport):
    session = make_session()
    backend.send_gate = asyncio.Event()
    await session.open("c1")
    await drain()

    task = asyncio.create_task(session.send("hi", "u1"))
    await drain()
    transport.latest("c1").push(MessageInserted(make_message("srv-1", content="hi", created_at_ms=1200)))
    await drain()

    assert _confirmed_ids(session) == ["srv-1"]
    assert _pending(session) == []

    backend.send_gate.set()
    await task

    assert len(session.view()) == 1
    await session.close()


@pytest.mark.asyncio
async def test_echo_after_send_response_is_not_duplicated(make_session, transport):
    session = make_session()
    await session.open("c1")
    await drain()

    await session.send("hi", "u1")
    transport.latest("c1").push(MessageInserted(make_message("srv-1", content="hi")))
    await drain()

    assert _confirmed_ids(session) == ["srv-1"]
    assert _pending(session) == []
    await session.close()


@pytest.mark.asyncio
async def test_events_from_previous_conversation_are_dropped(make_session, transport):
    session = make_session()
    await session.open("cA")
    await drain()
    feed_a = transport.latest("cA")

    await session.open("cB")
    await drain()
    feed_a.push(MessageInserted(make_message("leak", conversation_id="cA")))
    await drain()

    assert session.conversation_id == "cB"
    assert session.view() == []
    await session.close()


@pytest.mark.asyncio
async def test_slow_fetch_for_superseded_conversation_is_ignored(make_session, backend):
    session = make_session()
    backend.messages = {
        "cA": make_history(3, conversation_id="cA"),
        "cB": make_history(2, conversation_id="cB"),
    }
    backend.fetch_gates["cA"] = asyncio.Event()

    first = asyncio.create_task(session.open("cA"))
    await drain()
    second = await session.open("cB")
    backend.fetch_gates["cA"].set()
    superseded = await first

    assert second.ok
    assert superseded.error == ErrorKind.SUPERSEDED
    assert _confirmed_ids(session) == ["cB-h0", "cB-h1"]
    await session.close()


@pytest.mark.asyncio
async def test_send_completing_after_switch_does_not_leak(make_session, backend):
    session = make_session()
    backend.send_gate = asyncio.Event()
    await session.open("cA")

    task = asyncio.create_task(session.send("hi", "u1"))
    await drain()
    await session.open("cB")
    backend.send_gate.set()
    _, outcome = await task

    assert outcome.error == ErrorKind.SUPERSEDED
    assert session.view() == []
    await session.close()


@pytest.mark.asyncio
async def test_initial_fetch_failure_lands_in_active_with_error(make_session, backend):
    session = make_session()
    backend.fetch_error = NetworkFailure("offline")

    outcome = await session.open("c1")

    assert outcome.error == ErrorKind.NETWORK_FAILURE
    assert session.state == SessionState.ACTIVE
    assert session.last_error.error == ErrorKind.NETWORK_FAILURE
    assert session.view() == []
    await session.close()


@pytest.mark.asyncio
async def test_events_during_opening_are_buffered(make_session, backend, transport):
    session = make_session()
    backend.messages = {"c1": make_history(2)}
    backend.fetch_gates["c1"] = asyncio.Event()

    task = asyncio.create_task(session.open("c1"))
    await drain()
    assert session.state == SessionState.OPENING

    transport.latest("c1").push(MessageInserted(make_message("live", created_at_ms=5000)))
    await drain()
    assert session.view() == []

    backend.fetch_gates["c1"].set()
    await task

    assert _confirmed_ids(session) == ["c1-h0", "c1-h1", "live"]
    await session.close()


@pytest.mark.asyncio
async def test_load_older_through_session(make_session, backend):
    session = make_session(page_size=50)
    backend.messages = {"c1": make_history(62)}

    await session.open("c1")
    assert len(session.view()) == 50
    assert session.has_more is True

    outcome = await session.load_older()

    assert outcome.value == 12
    assert session.has_more is False
    assert len(session.view()) == 62
    assert backend.fetch_calls[-1] == ("c1", 1120, 50)
    await session.close()


@pytest.mark.asyncio
async def test_load_older_failure_is_reported(make_session, backend):
    session = make_session(page_size=2)
    backend.messages = {"c1": make_history(4)}
    await session.open("c1")
    backend.fetch_error = NetworkFailure("offline")

    outcome = await session.load_older()

    assert outcome.error == ErrorKind.FETCH_FAILED
    assert outcome.cause == ErrorKind.NETWORK_FAILURE
    assert session.has_more is True
    assert len(session.view()) == 2
    await session.close()


@pytest.mark.asyncio
async def test_realtime_update_and_delete(make_session, backend, transport):
    session = make_session()
    backend.messages = {"c1": [make_message("m1", author_display_name="Ann")]}
    await session.open("c1")
    await drain()
    feed = transport.latest("c1")

    feed.push(MessageUpdated(make_message("m1", edited=True, edited_content="fixed")))
    await drain()
    [m1] = session.view()
    assert m1.edited
    assert m1.display_content == "fixed"
    assert m1.author_display_name == "Ann"

    feed.push(MessageDeleted("m1", "c1"))
    feed.push(MessageDeleted("m1", "c1"))
    await drain()
    assert session.view() == []
    await session.close()


@pytest.mark.asyncio
async def test_resync_after_reconnect_picks_up_missed_messages(make_session, backend, transport, sleep):
    session = make_session()
    await session.open("c1")
    await drain()
    assert session.connected

    backend.messages["c1"] = [make_message("missed", created_at_ms=2000)]
    transport.latest("c1").drop()
    await drain(50)

    assert session.connected
    assert sleep.delays == [0.5]
    assert _confirmed_ids(session) == ["missed"]
    await session.close()


@pytest.mark.asyncio
async def test_subscription_auth_failure_surfaces_error(make_session, transport):
    session = make_session()
    transport.connect_errors = [AuthExpired("jwt expired")]

    await session.open("c1")
    await drain()

    assert not session.connected
    assert session.last_error.error == ErrorKind.AUTH_EXPIRED
    await session.close()


@pytest.mark.asyncio
async def test_listeners_are_notified_until_unsubscribed(make_session):
    session = make_session()
    calls = []
    unsubscribe = session.subscribe(lambda: calls.append(len(session.view())))

    await session.open("c1")
    await session.send("one", "u1")
    seen = len(calls)
    unsubscribe()
    await session.send("two", "u1")

    assert seen >= 3
    assert len(calls) == seen
    await session.close()


@pytest.mark.asyncio
async def test_send_rejects_blank_content_and_closed_session(make_session):
    session = make_session()

    with pytest.raises(SessionClosedError):
        await session.send("hi", "u1")

    await session.open("c1")
    with pytest.raises(ValidationError):
        await session.send("   ", "u1")

    await session.close()
    assert session.state == SessionState.CLOSED
    with pytest.raises(SessionClosedError):
        await session.send("hi", "u1")


@pytest.mark.asyncio
async def test_send_times_out_into_failed(make_session, backend):
    session = make_session(request_timeout=0.01)
    backend.send_gate = asyncio.Event()
    await session.open("c1")

    temp_id, _ = await session.send("hi", "u1")

    pending = session.pending(temp_id)
    assert pending.is_failed
    assert pending.error_kind == ErrorKind.NETWORK_FAILURE
    await session.close()


@pytest.mark.asyncio
async def test_discard_failed_entry(make_session, backend):
    session = make_session()
    backend.send_errors = [NetworkFailure("offline")]
    await session.open("c1")
    temp_id, _ = await session.send("hi", "u1")

    assert session.discard(temp_id) is True
    assert session.discard(temp_id) is False
    assert session.view() == []
    await session.close()


@pytest.mark.asyncio
async def test_refetch_keeps_failed_sends(make_session, backend):
    session = make_session()
    backend.messages = {"c1": [make_message("m1")]}
    backend.send_errors = [NetworkFailure("offline")]
    await session.open("c1")
    temp_id, _ = await session.send("hi", "u1")
    backend.messages["c1"].append(make_message("m2", created_at_ms=3000))

    outcome = await session.refetch()

    assert outcome.value == 2
    assert session.pending(temp_id).is_failed
    assert "m2" in _confirmed_ids(session)
    await session.close()


@pytest.mark.asyncio
async def test_author_names_are_filled_from_profile_cache(make_session, backend, transport):
    source = FakeProfileSource(profiles={"u1": Profile("u1", username=None, email="ann@example.com")})
    session = make_session(profiles=ProfileCache(source))
    backend.messages = {"c1": [make_message("m1"), make_message("m2", created_at_ms=1001)]}

    await session.open("c1")
    await drain()

    assert [e.author_display_name for e in session.view()] == ["ann", "ann"]
    assert source.calls == [["u1"]]

    transport.latest("c1").push(MessageInserted(make_message("m3", created_at_ms=1002)))
    await drain()
    assert session.view()[-1].author_display_name == "ann"
    assert source.calls == [["u1"]]
    await session.close()


@pytest.mark.asyncio
async def test_echo_after_timeout_replaces_failed_entry(make_session, backend, transport):
    session = make_session(request_timeout=0.01)
    backend.send_gate = asyncio.Event()
    await session.open("c1")
    await drain()

    temp_id, outcome = await session.send("hi", "u1")
    assert outcome.error == ErrorKind.NETWORK_FAILURE
    assert session.pending(temp_id).is_failed

    # the server stored the message after all
    transport.latest("c1").push(MessageInserted(make_message("srv-9", content="hi", created_at_ms=1300)))
    await drain()

    view = session.view()
    assert len(view) == 1
    assert isinstance(view[0], Message)
    assert view[0].id == "srv-9"
    assert session.pending(temp_id) is None
    assert (await session.retry(temp_id)).error == ErrorKind.NOT_FOUND
    assert len(backend.send_calls) == 1
    await session.close()


@pytest.mark.asyncio
async def test_refetch_during_send_that_fails_keeps_it_visible(make_session, backend):
    session = make_session()
    backend.messages = {"c1": [make_message("m1")]}
    backend.send_gate = asyncio.Event()
    backend.send_errors = [NetworkFailure("offline")]
    await session.open("c1")

    task = asyncio.create_task(session.send("important", "u1"))
    await drain()
    await session.refetch()
    assert [e.content for e in _pending(session)] == ["important"]

    backend.send_gate.set()
    temp_id, outcome = await task

    assert outcome.error == ErrorKind.NETWORK_FAILURE
    pending = session.pending(temp_id)
    assert pending is not None
    assert pending.is_failed
    assert _confirmed_ids(session) == ["m1"]
    assert _pending(session) == [pending]
    await session.close()


@pytest.mark.asyncio
async def test_refetch_during_send_that_succeeds_shows_one_entry(make_session, backend):
    session = make_session()
    backend.send_gate = asyncio.Event()
    backend.server_time_ms = 1100
    await session.open("c1")

    task = asyncio.create_task(session.send("hi", "u1"))
    await drain()
    await session.refetch()
    backend.send_gate.set()
    _, outcome = await task

    assert outcome.ok
    assert _confirmed_ids(session) == ["srv-1"]
    assert _pending(session) == []
    await session.close()


@pytest.mark.asyncio
async def test_mute_status_is_loaded_for_the_viewer(make_session, backend):
    session = make_session()
    backend.muted = {("c1", "u1")}

    await session.open("c1", viewer_id="u1")
    await drain()
    assert session.muted is True

    await session.open("c2", viewer_id="u1")
    await drain()
    assert session.muted is False
    await session.close()


@pytest.mark.asyncio
async def test_realtime_mute_changes_for_the_viewer(make_session, transport):
    session = make_session()
    await session.open("c1", viewer_id="u1")
    await drain()
    feed = transport.latest("c1")

    feed.push(MuteChanged("u2", "c1", muted=True))
    await drain()
    assert session.muted is False

    feed.push(MuteChanged("u1", "c1", muted=True))
    await drain()
    assert session.muted is True

    feed.push(MuteChanged("u1", "c1", muted=False))
    await drain()
    assert session.muted is False
    await session.close()


@pytest.mark.asyncio
async def test_realtime_mute_wins_over_slower_status_fetch(make_session, backend, transport):
    session = make_session()
    backend.mute_gate = asyncio.Event()
    await session.open("c1", viewer_id="u1")
    await drain()

    transport.latest("c1").push(MuteChanged("u1", "c1", muted=True))
    await drain()
    backend.mute_gate.set()
    await drain()

    assert session.muted is True
    await session.close()


@pytest.mark.asyncio
async def test_mute_lookup_failure_leaves_viewer_unmuted(make_session, backend):
    session = make_session()
    backend.mute_error = NetworkFailure("offline")

    outcome = await session.open("c1", viewer_id="u1")
    await drain()

    assert outcome.ok
    assert session.muted is False
    assert session.last_error is None
    await session.close()
