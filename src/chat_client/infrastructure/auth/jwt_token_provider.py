from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

import httpx
import jwt
from pydantic import ValidationError as PydanticValidationError

from chat_client.application.exceptions import AuthExpired, NetworkFailure
from chat_client.infrastructure.http.wire import TokenResponse

logger = logging.getLogger(__name__)


def read_claims(token: str) -> dict[str, Any]:
    """Decode claims without verifying the signature; the backend verifies."""
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        raise AuthExpired(f"Access token is malformed: {exc}") from exc


class JwtTokenProvider:
    """Holds the signed-in user's access/refresh pair and refreshes it.

    Implements application.ports.auth.TokenProvider.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        refresh_token: str | None = None,
        *,
        api_key: str | None = None,
        refresh_path: str = "/auth/v1/token",
        leeway_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._api_key = api_key
        self._refresh_path = refresh_path
        self._leeway = leeway_seconds
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def subject(self) -> str | None:
        sub = read_claims(self._access_token).get("sub")
        return str(sub) if sub is not None else None

    def needs_refresh(self) -> bool:
        exp = read_claims(self._access_token).get("exp")
        if exp is None:
            return False
        return float(exp) - self._leeway <= self._clock()

    async def get_token(self) -> str:
        if self._refresh_token and self.needs_refresh():
            return await self.refresh()
        return self._access_token

    async def refresh(self) -> str:
        if not self._refresh_token:
            raise AuthExpired("Session expired and no refresh token is available")

        stale = self._access_token
        async with self._lock:
            if self._access_token != stale:
                return self._access_token

            headers = {"apikey": self._api_key} if self._api_key else {}
            try:
                response = await self._client.post(
                    self._refresh_path,
                    params={"grant_type": "refresh_token"},
                    json={"refresh_token": self._refresh_token},
                    headers=headers,
                )
            except httpx.TransportError as exc:
                raise NetworkFailure(f"Token refresh failed: {exc}") from exc

            if response.status_code in (400, 401, 403):
                raise AuthExpired("Refresh token rejected. Please log in again.")
            if response.status_code >= 400:
                raise NetworkFailure(f"Token refresh failed with HTTP {response.status_code}")

            try:
                tokens = TokenResponse.model_validate(response.json())
            except (ValueError, PydanticValidationError) as exc:
                raise AuthExpired("Token refresh returned an unexpected body") from exc

            self._access_token = tokens.access_token
            if tokens.refresh_token:
                self._refresh_token = tokens.refresh_token
            logger.info("Access token refreshed")
            return self._access_token
