"""Dev script: publish a fake row change so a running gateway can be watched reacting.

    python -m chat_client.scripts.publish_dev_message <conversation_id> <user_id> "hello"
"""
from __future__ import annotations

import asyncio
import logging
import sys
import uuid

import redis.asyncio as aioredis

from chat_client.application.ports.clock import SystemClock
from chat_client.config import settings
from chat_client.domain.entities.message import Message
from chat_client.domain.events.message_changes import MessageInserted
from chat_client.infrastructure.realtime.redis_pubsub import RedisChangePublisher, channel_name

logger = logging.getLogger(__name__)


async def publish(conversation_id: str, user_id: str, content: str) -> Message:
    message = Message(
        id=str(uuid.uuid4()),
        conversation_id=conversation_id,
        author_id=user_id,
        author_display_name="",
        content=content,
        created_at_ms=SystemClock().now_ms(),
    )
    r = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await RedisChangePublisher(r, settings.REALTIME_CHANNEL_PREFIX).publish(
            conversation_id, MessageInserted(message),
        )
    finally:
        await r.aclose()
    logger.info(
        "Published message %s on %s",
        message.id, channel_name(settings.REALTIME_CHANNEL_PREFIX, conversation_id),
    )
    return message


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    if len(sys.argv) != 4:
        sys.exit(__doc__)
    asyncio.run(publish(sys.argv[1], sys.argv[2], sys.argv[3]))


if __name__ == "__main__":
    main()
