"""Entrypoint: python -m chat_client"""
from __future__ import annotations

import logging

import uvicorn

from chat_client.config import settings


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "chat_client.api.app:create_app",
        factory=True,
        host=settings.GATEWAY_HOST,
        port=settings.GATEWAY_PORT,
        log_level=settings.LOG_LEVEL,
    )


if __name__ == "__main__":
    main()
