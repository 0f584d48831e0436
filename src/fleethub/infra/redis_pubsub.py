"""Redis PUB/SUB wrappers for the event fan-out channel.

ChannelPublisher publishes serialized event envelopes; every observer
(SSE stream, WebSocket) owns one ChannelSubscriber, so a slow observer
only ever delays its own connection.

Channel: REDIS_CHANNEL_EVENTS (default fleethub:events)
"""

import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class ChannelPublisher:
    """Publishes payloads to a Redis PUB/SUB channel."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    async def publish(self, channel: str, payload: str) -> int:
        """Publish payload.

        Returns the number of subscribers that received the message.
        """
        count = await self._client.publish(channel, payload)
        logger.debug("Published to %s (subscribers=%d)", channel, count)
        return count


class ChannelSubscriber:
    """Subscribes to one Redis PUB/SUB channel."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._pubsub: redis.client.PubSub | None = None
        self._channel: str | None = None

    @property
    def channel(self) -> str | None:
        return self._channel

    async def subscribe(self, channel: str) -> None:
        """Create the PubSub connection and subscribe to channel."""
        self._channel = channel
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(channel)
        logger.info("Subscribed to %s", channel)

    async def unsubscribe(self) -> None:
        """Unsubscribe and close PubSub connection."""
        if self._pubsub:
            try:
                await self._pubsub.unsubscribe()
                await self._pubsub.aclose()
            except Exception as e:
                logger.warning("Error closing pubsub: %s", e)
            self._pubsub = None
        self._channel = None

    async def get_message(self, timeout: float = 0.0) -> str | None:
        """Read one payload, or None if nothing arrived within timeout.

        Raises redis.ConnectionError so callers can back off.
        """
        if not self._pubsub:
            return None

        msg = await self._pubsub.get_message(
            ignore_subscribe_messages=True,
            timeout=timeout,
        )
        if msg and msg["type"] == "message":
            return msg["data"]
        return None
