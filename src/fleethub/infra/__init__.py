"""Infrastructure connections (DB, Redis) and the event fan-out channel."""

from fleethub.infra.event_bus import EventBus
from fleethub.infra.postgresql import (
    close_db,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    ping_db,
    pool_usage,
)
from fleethub.infra.redis import close_redis, get_redis, init_redis
from fleethub.infra.redis_pubsub import ChannelPublisher, ChannelSubscriber

__all__ = [
    # DB
    "init_db",
    "close_db",
    "get_engine",
    "get_session",
    "get_session_factory",
    "ping_db",
    "pool_usage",
    # Redis
    "init_redis",
    "close_redis",
    "get_redis",
    "ChannelPublisher",
    "ChannelSubscriber",
    # Fan-out
    "EventBus",
]
