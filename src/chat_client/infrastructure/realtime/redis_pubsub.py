"""Redis Pub/Sub realtime transport: one channel per conversation."""
from __future__ import annotations

import logging
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub
from redis.exceptions import AuthenticationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from chat_client.application.exceptions import AuthExpired, MalformedServerData, NetworkFailure
from chat_client.domain.events.message_changes import MessageDeleted, MuteChanged, RealtimeEvent
from chat_client.infrastructure.realtime.serializer import deserialize_change, serialize_change

logger = logging.getLogger(__name__)


def channel_name(prefix: str, conversation_id: str) -> str:
    return f"{prefix}:{conversation_id}"


class RedisChangePublisher:
    """Publishes message changes the way the database fan-out does."""

    def __init__(self, redis: aioredis.Redis, channel_prefix: str) -> None:
        self._redis = redis
        self._prefix = channel_prefix

    async def publish(self, conversation_id: str, change: RealtimeEvent) -> None:
        await self._redis.publish(channel_name(self._prefix, conversation_id), serialize_change(change))


class RedisFeed:
    """Implements application.ports.realtime.RealtimeFeed."""

    def __init__(self, pubsub: PubSub, channel: str, conversation_id: str) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._conversation_id = conversation_id
        self._closed = False

    def __aiter__(self) -> AsyncIterator[RealtimeEvent]:
        return self._listen()

    async def _listen(self) -> AsyncIterator[RealtimeEvent]:
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    change = deserialize_change(message["data"])
                except MalformedServerData as exc:
                    logger.warning("Dropping malformed payload on %s: %s", self._channel, exc.detail)
                    continue
                if not self._belongs_here(change):
                    logger.warning("Dropping change for another conversation on %s", self._channel)
                    continue
                yield change
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise NetworkFailure(f"Realtime connection lost: {exc}") from exc

    def _belongs_here(self, change: RealtimeEvent) -> bool:
        if isinstance(change, (MessageDeleted, MuteChanged)):
            return change.conversation_id in (None, self._conversation_id)
        return change.message.conversation_id == self._conversation_id

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self._channel)
        finally:
            await self._pubsub.aclose()


class RedisRealtimeTransport:
    """Implements application.ports.realtime.RealtimeTransport."""

    def __init__(self, redis: aioredis.Redis, channel_prefix: str = "chat.messages") -> None:
        self._redis = redis
        self._prefix = channel_prefix

    async def connect(self, conversation_id: str) -> RedisFeed:
        channel = channel_name(self._prefix, conversation_id)
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except AuthenticationError as exc:
            await pubsub.aclose()
            raise AuthExpired(f"Realtime subscription rejected: {exc}") from exc
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            await pubsub.aclose()
            raise NetworkFailure(f"Realtime connect failed: {exc}") from exc
        logger.debug("Subscribed to %s", channel)
        return RedisFeed(pubsub, channel, conversation_id)
