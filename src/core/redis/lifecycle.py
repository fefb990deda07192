from collections.abc import Awaitable
import logging

from fastapi import FastAPI

from src.core.redis.core import create_redis_client
from src.main.config import RedisConfig

logger = logging.getLogger("redis")


async def on_redis_startup(app: FastAPI, redis_config: RedisConfig) -> None:
    """
    Initialize a Redis client and attach it to app.state for DI access.
    """
    redis_client = create_redis_client(
        connection_url=redis_config.dsn,
        socket_timeout=redis_config.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=redis_config.REDIS_SOCKET_CONNECT_TIMEOUT,
    )
    ping_result = redis_client.ping()
    if isinstance(ping_result, Awaitable):
        await ping_result
    else:
        # For sync-returning clients, just check truthiness
        if not ping_result:
            raise RuntimeError("Redis ping failed during startup")
    app.state.redis_client = redis_client
    logger.info("Redis client created successfully.")


async def on_redis_shutdown(app: FastAPI) -> None:
    redis_client = getattr(app.state, "redis_client", None)
    if redis_client:
        logger.info("Closing Redis client...")
        await redis_client.aclose()
        logger.info("Redis client closed.")
