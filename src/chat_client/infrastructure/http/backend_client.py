"""httpx adapters for the backend's message and profile endpoints."""
from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from chat_client.application.exceptions import (
    AuthExpired,
    ForbiddenError,
    MalformedServerData,
    NetworkFailure,
    NotFoundError,
    ValidationError,
)
from chat_client.application.ports.auth import TokenProvider
from chat_client.domain.entities.message import Message
from chat_client.domain.entities.profile import Profile
from chat_client.infrastructure.http.correlation import HEADER, correlation_id_ctx
from chat_client.infrastructure.http.wire import (
    MessageEnvelope,
    MessagesEnvelope,
    MuteStatus,
    WireProfile,
)
from chat_client.infrastructure.timestamps import from_epoch_ms

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        detail = body.get("details") or body.get("error") or body.get("detail")
        if detail:
            return str(detail)
    return response.reason_phrase or f"HTTP {response.status_code}"


def _parse(model: type[BaseModel], payload: Any) -> Any:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise MalformedServerData(
            f"Unexpected {model.__name__} payload: {exc.error_count()} validation errors"
        ) from exc


class AuthorizedHttp:
    """Bearer-authenticated requests with one refresh-and-retry on 401."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        tokens: TokenProvider,
        *,
        api_key: str | None = None,
    ) -> None:
        self._client = client
        self._tokens = tokens
        self._api_key = api_key

    async def request(self, method: str, url: str, **kwargs: Any) -> Any:
        token = await self._tokens.get_token()
        response = await self._send(method, url, token, **kwargs)
        if response.status_code == 401:
            logger.info("%s %s returned 401, refreshing token", method, url)
            token = await self._tokens.refresh()
            response = await self._send(method, url, token, **kwargs)
            if response.status_code == 401:
                raise AuthExpired("Session expired. Please log in again.")

        if response.status_code == 403:
            raise ForbiddenError(_error_detail(response))
        if response.status_code == 404:
            raise NotFoundError(_error_detail(response))
        if response.status_code in (400, 422):
            raise ValidationError(_error_detail(response))
        if response.status_code >= 400:
            raise NetworkFailure(f"Backend error {response.status_code}: {_error_detail(response)}")

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedServerData(f"{method} {url} returned a non-JSON body") from exc

    async def _send(self, method: str, url: str, token: str, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"}
        if self._api_key:
            headers["apikey"] = self._api_key
        cid = correlation_id_ctx.get()
        if cid:
            headers[HEADER] = cid
        try:
            return await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkFailure(f"{method} {url} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkFailure(f"{method} {url} failed: {exc}") from exc


class HttpMessageBackend(AuthorizedHttp):
    """Implements application.ports.backend.MessageBackend."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        tokens: TokenProvider,
        *,
        api_key: str | None = None,
        messages_path: str = "/api/chats",
    ) -> None:
        super().__init__(client, tokens, api_key=api_key)
        self._messages_path = messages_path.rstrip("/")

    def _url(self, conversation_id: str) -> str:
        return f"{self._messages_path}/{conversation_id}/messages"

    async def fetch_messages(
        self,
        conversation_id: str,
        *,
        before_ms: int | None = None,
        limit: int = 50,
    ) -> list[Message]:
        params: dict[str, Any] = {"limit": limit}
        if before_ms is not None:
            params["before"] = from_epoch_ms(before_ms).isoformat()
        payload = await self.request("GET", self._url(conversation_id), params=params)
        envelope: MessagesEnvelope = _parse(MessagesEnvelope, payload)
        messages = [m.to_domain(conversation_id) for m in envelope.messages]
        # the endpoint pages newest-first
        messages.sort(key=lambda m: m.created_at_ms)
        return messages

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        author_id: str,
        *,
        reply_to_id: str | None = None,
    ) -> Message:
        body: dict[str, Any] = {"content": content, "authorId": author_id}
        if reply_to_id is not None:
            body["replyTo"] = reply_to_id
        payload = await self.request("POST", self._url(conversation_id), json=body)
        envelope: MessageEnvelope = _parse(MessageEnvelope, payload)
        return envelope.message.to_domain(conversation_id)

    async def fetch_mute_status(self, conversation_id: str, user_id: str) -> bool:
        payload = await self.request(
            "GET",
            f"{self._messages_path}/{conversation_id}/mute",
            params={"userId": user_id},
        )
        status: MuteStatus = _parse(MuteStatus, payload)
        return status.muted


class HttpProfileSource(AuthorizedHttp):
    """Implements application.ports.backend.ProfileSource over the profiles table."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        tokens: TokenProvider,
        *,
        api_key: str | None = None,
        profiles_path: str = "/rest/v1/profiles",
    ) -> None:
        super().__init__(client, tokens, api_key=api_key)
        self._profiles_path = profiles_path

    async def fetch_profiles(self, user_ids: list[str]) -> list[Profile]:
        if not user_ids:
            return []
        params = {
            "select": "id,username,email",
            "id": f"in.({','.join(user_ids)})",
        }
        payload = await self.request("GET", self._profiles_path, params=params)
        if not isinstance(payload, list):
            raise MalformedServerData("Profiles endpoint did not return a list")
        return [_parse(WireProfile, row).to_domain() for row in payload]
