from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chat_client.api.deps import RegistryDep
from chat_client.api.v1.schemas.session import session_view
from chat_client.api.v1.schemas.ws import WsInbound, WsOutbound
from chat_client.application.exceptions import NotFoundError
from chat_client.config import settings
from chat_client.services.conversation_session import ConversationSession

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


@router.websocket("/ws/sessions/{session_key}")
async def ws_session(
    websocket: WebSocket,
    session_key: str,
    registry: RegistryDep,
) -> None:
    """Push a fresh view snapshot to the client after every change."""
    try:
        session = registry.get(session_key)
    except NotFoundError:
        await websocket.close(code=4004, reason="Session not found")
        return

    await websocket.accept()
    changed = asyncio.Event()
    changed.set()
    unsubscribe = session.subscribe(changed.set)

    tasks = [
        asyncio.create_task(_push_views(websocket, session_key, session, changed), name=f"ws-view-{session_key}"),
        asyncio.create_task(_read_loop(websocket), name=f"ws-read-{session_key}"),
        asyncio.create_task(_heartbeat(websocket), name=f"ws-heartbeat-{session_key}"),
    ]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        unsubscribe()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("WS closed for session %s", session_key)


async def _push_views(
    ws: WebSocket,
    session_key: str,
    session: ConversationSession,
    changed: asyncio.Event,
) -> None:
    while True:
        await changed.wait()
        changed.clear()
        view = session_view(session_key, session)
        await ws.send_text(
            WsOutbound(type="view", data=view.model_dump(mode="json")).model_dump_json()
        )


async def _read_loop(ws: WebSocket) -> None:
    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = WsInbound.model_validate_json(raw)
            except ValueError:
                await ws.send_text(
                    WsOutbound(type="error", data={"code": "invalid_payload"}).model_dump_json()
                )
                continue

            if msg.type == "ping":
                await ws.send_text(WsOutbound(type="pong", data={}).model_dump_json())
            else:
                await ws.send_text(
                    WsOutbound(type="error", data={"code": "unknown_type", "type": msg.type}).model_dump_json()
                )
    except WebSocketDisconnect:
        pass


async def _heartbeat(ws: WebSocket) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    while True:
        await asyncio.sleep(interval)
        await ws.send_text(WsOutbound(type="pong", data={}).model_dump_json())
