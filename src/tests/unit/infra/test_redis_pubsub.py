"""Unit tests for ChannelPublisher and ChannelSubscriber (PUB/SUB)."""

from unittest.mock import AsyncMock, MagicMock

from fleethub.infra.redis_pubsub import ChannelPublisher, ChannelSubscriber


class TestChannelPublisher:
    async def test_publish(self) -> None:
        mock_redis = AsyncMock()
        mock_redis.publish = AsyncMock(return_value=3)

        count = await ChannelPublisher(mock_redis).publish("fleethub:events", "{}")

        mock_redis.publish.assert_called_once_with("fleethub:events", "{}")
        assert count == 3


def _subscriber() -> tuple[ChannelSubscriber, AsyncMock]:
    mock_pubsub = AsyncMock()
    mock_redis = MagicMock()
    mock_redis.pubsub = MagicMock(return_value=mock_pubsub)
    return ChannelSubscriber(mock_redis), mock_pubsub


class TestChannelSubscriber:
    async def test_subscribe(self) -> None:
        subscriber, pubsub = _subscriber()

        await subscriber.subscribe("fleethub:events")

        pubsub.subscribe.assert_called_once_with("fleethub:events")
        assert subscriber.channel == "fleethub:events"

    async def test_get_message_returns_data(self) -> None:
        subscriber, pubsub = _subscriber()
        pubsub.get_message = AsyncMock(return_value={"type": "message", "data": '{"type":"x"}'})
        await subscriber.subscribe("fleethub:events")

        assert await subscriber.get_message(timeout=0.1) == '{"type":"x"}'
        pubsub.get_message.assert_called_once_with(ignore_subscribe_messages=True, timeout=0.1)

    async def test_get_message_none(self) -> None:
        subscriber, pubsub = _subscriber()
        pubsub.get_message = AsyncMock(return_value=None)
        await subscriber.subscribe("fleethub:events")

        assert await subscriber.get_message() is None

    async def test_get_message_before_subscribe(self) -> None:
        subscriber, _ = _subscriber()

        assert await subscriber.get_message() is None

    async def test_unsubscribe_closes(self) -> None:
        subscriber, pubsub = _subscriber()
        await subscriber.subscribe("fleethub:events")

        await subscriber.unsubscribe()

        pubsub.unsubscribe.assert_called_once()
        pubsub.aclose.assert_called_once()
        assert subscriber.channel is None

    async def test_unsubscribe_error_is_logged(self) -> None:
        subscriber, pubsub = _subscriber()
        pubsub.aclose.side_effect = ConnectionError("gone")
        await subscriber.subscribe("fleethub:events")

        await subscriber.unsubscribe()

        assert subscriber.channel is None
