from __future__ import annotations

from fastapi import APIRouter, status

from chat_client.api.deps import AuthorDep, RegistryDep
from chat_client.api.v1.schemas.session import (
    OpenSessionRequest,
    OperationResponse,
    SendMessageRequest,
    SessionViewResponse,
    operation_response,
    session_view,
)
from chat_client.application.dto.outcome import Outcome
from chat_client.domain.value_objects.enums import ErrorKind

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


@router.post("/{session_key}/open", response_model=OperationResponse)
async def open_session(
    session_key: str,
    body: OpenSessionRequest,
    registry: RegistryDep,
    viewer_id: AuthorDep,
) -> OperationResponse:
    session = registry.get_or_create(session_key)
    outcome = await session.open(body.conversation_id, viewer_id=viewer_id)
    return operation_response(session_key, session, outcome, count=outcome.value)


@router.get("/{session_key}/view", response_model=SessionViewResponse)
async def get_view(session_key: str, registry: RegistryDep) -> SessionViewResponse:
    return session_view(session_key, registry.get(session_key))


@router.post(
    "/{session_key}/messages",
    response_model=OperationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    session_key: str,
    body: SendMessageRequest,
    registry: RegistryDep,
    author_id: AuthorDep,
) -> OperationResponse:
    session = registry.get(session_key)
    temp_id, outcome = await session.send(body.content, author_id, reply_to_id=body.reply_to_id)
    return operation_response(session_key, session, outcome, temp_id=temp_id)


@router.post("/{session_key}/pending/{temp_id}/retry", response_model=OperationResponse)
async def retry_message(
    session_key: str,
    temp_id: str,
    registry: RegistryDep,
) -> OperationResponse:
    session = registry.get(session_key)
    outcome = await session.retry(temp_id)
    return operation_response(session_key, session, outcome, temp_id=temp_id)


@router.delete("/{session_key}/pending/{temp_id}", response_model=OperationResponse)
async def discard_message(
    session_key: str,
    temp_id: str,
    registry: RegistryDep,
) -> OperationResponse:
    session = registry.get(session_key)
    outcome: Outcome[None] = Outcome.success()
    if not session.discard(temp_id):
        outcome = Outcome.failure(ErrorKind.NOT_FOUND, f"No pending message {temp_id}")
    return operation_response(session_key, session, outcome, temp_id=temp_id)


@router.post("/{session_key}/load-older", response_model=OperationResponse)
async def load_older(session_key: str, registry: RegistryDep) -> OperationResponse:
    session = registry.get(session_key)
    outcome = await session.load_older()
    return operation_response(session_key, session, outcome, count=outcome.value)


@router.post("/{session_key}/refetch", response_model=OperationResponse)
async def refetch(session_key: str, registry: RegistryDep) -> OperationResponse:
    session = registry.get(session_key)
    outcome = await session.refetch()
    return operation_response(session_key, session, outcome, count=outcome.value)


@router.delete("/{session_key}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(session_key: str, registry: RegistryDep) -> None:
    await registry.close(session_key)
