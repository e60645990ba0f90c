from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    BACKEND_URL: str = "http://localhost:54321"
    BACKEND_API_KEY: str | None = None
    MESSAGES_PATH: str = "/api/chats"
    PROFILES_PATH: str = "/rest/v1/profiles"
    TOKEN_REFRESH_PATH: str = "/auth/v1/token"

    BACKEND_ACCESS_TOKEN: str = ""
    BACKEND_REFRESH_TOKEN: str | None = None
    TOKEN_REFRESH_LEEWAY_SECONDS: float = 30.0

    REDIS_URL: str = "redis://localhost:6379/0"
    REALTIME_CHANNEL_PREFIX: str = "chat.messages"

    PAGE_SIZE: int = 50
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    ECHO_TOLERANCE_MS: int = 15_000

    RECONNECT_BASE_DELAY_SECONDS: float = 0.5
    RECONNECT_MAX_DELAY_SECONDS: float = 30.0

    PROFILE_CACHE_TTL_SECONDS: float = 300.0
    PROFILE_CACHE_MAX_SIZE: int = 1000

    CORS_ORIGINS: list[str] = ["*"]
    GATEWAY_HOST: str = "127.0.0.1"
    GATEWAY_PORT: int = 8000
    WS_HEARTBEAT_SECONDS: int = 30

    LOG_LEVEL: Literal["debug", "info", "warning", "error"] = "info"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
