from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from chat_client.application.dto.outcome import Outcome
from chat_client.domain.entities.message import Message, PendingMessage, ViewEntry
from chat_client.domain.value_objects.enums import ErrorKind, SessionState
from chat_client.services.conversation_session import ConversationSession


class OpenSessionRequest(BaseModel):
    conversation_id: str = Field(min_length=1)


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    reply_to_id: str | None = None


class ErrorInfo(BaseModel):
    kind: ErrorKind
    detail: str = ""
    cause: ErrorKind | None = None


class MessageEntry(BaseModel):
    id: str
    temp_id: str | None = None
    status: Literal["confirmed", "pending", "failed"]
    conversation_id: str
    author_id: str
    author_display_name: str = ""
    content: str
    created_at_ms: int
    edited: bool = False
    edited_content: str | None = None
    reply_to_id: str | None = None
    error_detail: str | None = None
    error_kind: ErrorKind | None = None


class SessionViewResponse(BaseModel):
    session_key: str
    conversation_id: str | None
    state: SessionState
    connected: bool
    muted: bool = False
    has_more: bool
    loading_older: bool
    error: ErrorInfo | None = None
    messages: list[MessageEntry] = []


class OperationResponse(BaseModel):
    ok: bool
    error: ErrorInfo | None = None
    temp_id: str | None = None
    count: int | None = None
    view: SessionViewResponse


def error_info(outcome: Outcome[Any] | None) -> ErrorInfo | None:
    if outcome is None or outcome.error is None:
        return None
    return ErrorInfo(kind=outcome.error, detail=outcome.detail, cause=outcome.cause)


def message_entry(entry: ViewEntry) -> MessageEntry:
    if isinstance(entry, PendingMessage):
        return MessageEntry(
            id=entry.temp_id,
            temp_id=entry.temp_id,
            status="failed" if entry.is_failed else "pending",
            conversation_id=entry.conversation_id,
            author_id=entry.author_id,
            content=entry.content,
            created_at_ms=entry.created_at_ms,
            reply_to_id=entry.reply_to_id,
            error_detail=entry.error_detail,
            error_kind=entry.error_kind,
        )
    assert isinstance(entry, Message)
    return MessageEntry(
        id=entry.id,
        status="confirmed",
        conversation_id=entry.conversation_id,
        author_id=entry.author_id,
        author_display_name=entry.author_display_name,
        content=entry.content,
        created_at_ms=entry.created_at_ms,
        edited=entry.edited,
        edited_content=entry.edited_content,
        reply_to_id=entry.reply_to_id,
    )


def session_view(session_key: str, session: ConversationSession) -> SessionViewResponse:
    return SessionViewResponse(
        session_key=session_key,
        conversation_id=session.conversation_id,
        state=session.state,
        connected=session.connected,
        muted=session.muted,
        has_more=session.has_more,
        loading_older=session.is_loading_older,
        error=error_info(session.last_error),
        messages=[message_entry(e) for e in session.view()],
    )


def operation_response(
    session_key: str,
    session: ConversationSession,
    outcome: Outcome[Any],
    *,
    temp_id: str | None = None,
    count: int | None = None,
) -> OperationResponse:
    return OperationResponse(
        ok=outcome.ok,
        error=error_info(outcome),
        temp_id=temp_id,
        count=count,
        view=session_view(session_key, session),
    )
