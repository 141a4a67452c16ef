"""
Redis pub/sub broadcaster for multi-instance deployments.

Each room is a channel ``<prefix>:<room>``.  Redis delivers messages of a
channel in publish order, which gives FIFO per room across API processes.
Messages are the JSON form of ``Event.to_message()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import redis.asyncio as aioredis

from .broadcaster import Broadcaster, Event, Subscription

logger = logging.getLogger(__name__)


class _RedisSubscription(Subscription):
    def __init__(self, broadcaster: RedisBroadcaster):
        self._broadcaster = broadcaster
        self._pubsub = broadcaster.redis.pubsub()
        self.rooms: set[str] = set()

    async def join(self, room: str) -> None:
        await self._pubsub.subscribe(self._broadcaster.channel(room))
        self.rooms.add(room)

    async def leave(self, room: str) -> None:
        await self._pubsub.unsubscribe(self._broadcaster.channel(room))
        self.rooms.discard(room)

    async def next_event(self, timeout: Optional[float] = None) -> Optional[Event]:
        if not self.rooms:
            # redis-py refuses get_message before the first subscribe
            await asyncio.sleep(timeout or 0)
            return None
        message = await self._pubsub.get_message(
            ignore_subscribe_messages=True, timeout=timeout
        )
        if message is None or message.get("type") != "message":
            return None
        try:
            return Event.from_message(json.loads(message["data"]))
        except (json.JSONDecodeError, KeyError, TypeError):
            logger.warning("Invalid event from Redis: %r", message["data"])
            return None

    async def close(self) -> None:
        await self._pubsub.aclose()


class RedisBroadcaster(Broadcaster):
    def __init__(self, client: aioredis.Redis, prefix: str = "splitride"):
        self.redis = client
        self.prefix = prefix

    def channel(self, room: str) -> str:
        return f"{self.prefix}:{room}"

    async def publish(self, event: Event) -> None:
        receivers = await self.redis.publish(
            self.channel(event.room), json.dumps(event.to_message())
        )
        logger.debug(
            "Published %s to %s (%d receivers)", event.name, event.room, receivers
        )

    def subscribe(self) -> Subscription:
        return _RedisSubscription(self)

    async def close(self) -> None:
        await self.redis.aclose()
