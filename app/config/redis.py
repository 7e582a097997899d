"""Redis configuration."""
import os
from typing import Optional

import redis

from app.utils.logger import get_logger

logger = get_logger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Get the shared Redis client, connecting on first use."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    client = redis.Redis(
        host=os.getenv("REDIS_HOST", "localhost"),
        port=int(os.getenv("REDIS_PORT", "6379")),
        password=os.getenv("REDIS_PASSWORD") or None,
        db=int(os.getenv("REDIS_CACHE_DB", os.getenv("REDIS_DB", "1"))),
        decode_responses=True,
        socket_connect_timeout=5,
    )
    try:
        client.ping()
    except redis.ConnectionError as e:
        logger.error("Failed to connect to Redis", error=str(e))
        raise

    logger.info("Redis connection established")
    _redis_client = client
    return _redis_client


def reset_redis_client() -> None:
    """Drop the cached client so the next call reconnects."""
    global _redis_client
    _redis_client = None
