"""Redis client shared by the event publisher and the observers.

The connection pool is bounded by REDIS_MAX_CONNECTIONS. Every SSE or
WebSocket observer holds one PUB/SUB connection while it is connected,
so the bound is also the observer limit.
"""

import logging

import redis.asyncio as redis

from fleethub.app.config import get_settings
from fleethub.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_pool: redis.ConnectionPool | None = None
_client: redis.Redis | None = None


async def init_redis() -> None:
    global _pool, _client

    config = get_settings().redis
    pool = redis.ConnectionPool.from_url(
        config.url,
        decode_responses=True,
        max_connections=config.max_connections,
        socket_connect_timeout=config.connect_timeout,
        health_check_interval=config.health_check_interval,
    )
    client = redis.Redis(connection_pool=pool)
    try:
        await client.ping()
    except redis.RedisError as e:
        logger.error(
            "Redis connection failed",
            extra={"event": LogEvent.REDIS_CONNECTION_ERROR, "error": str(e)},
        )
        await pool.disconnect()
        raise

    _pool, _client = pool, client
    logger.info(
        "Redis connected",
        extra={"event": LogEvent.APP_STARTED, "max_connections": config.max_connections},
    )


async def close_redis() -> None:
    global _pool, _client

    if _client is not None:
        await _client.aclose()
    if _pool is not None:
        await _pool.disconnect()
        logger.info("Redis disconnected", extra={"event": LogEvent.APP_STOPPED})
    _pool, _client = None, None


def get_redis() -> redis.Redis:
    """Client for publishing and for opening observer subscriptions."""
    if _client is None:
        raise RuntimeError("Redis not initialized")
    return _client
