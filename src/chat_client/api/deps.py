"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, status
from starlette.requests import HTTPConnection

from chat_client.application.exceptions import AuthExpired
from chat_client.services.session_registry import SessionRegistry


def get_registry(conn: HTTPConnection) -> SessionRegistry:
    return conn.app.state.registry


RegistryDep = Annotated[SessionRegistry, Depends(get_registry)]


def get_author_id(conn: HTTPConnection) -> str:
    """Subject of the configured backend session; messages are sent as this user."""
    try:
        subject = conn.app.state.tokens.subject
    except AuthExpired as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.detail) from exc
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No signed-in user is configured",
        )
    return subject


AuthorDep = Annotated[str, Depends(get_author_id)]
