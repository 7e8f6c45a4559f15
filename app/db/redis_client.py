# app/db/redis_client.py
"""
🔴 Redis Connection Management
================================

Builds Redis clients for the Redis-backed record store.
Clients are owned by whoever creates them; there is no module-level instance.
"""

import logging
from typing import Optional
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.core.config import settings

logger = logging.getLogger(__name__)


def create_redis_client(redis_url: Optional[str] = None) -> redis.Redis:
    """
    Create a Redis client with its own connection pool.

    The connection is lazy: nothing is dialed until the first command.
    """
    redis_url = redis_url or settings.get_redis_url

    pool = ConnectionPool.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,  # Records are JSON strings
        max_connections=50,
        socket_connect_timeout=5,
        socket_keepalive=True,
        health_check_interval=30
    )
    client = redis.Redis(connection_pool=pool)

    # Log host only
    logger.info(f"Redis client initialized for {redis_url.split('@')[-1]} (lazy connection)")
    return client

