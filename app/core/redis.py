"""Optional Redis cache for read-heavy hotel endpoints.

Without ``REDIS_URL`` (or when Redis is down) every helper degrades to a
no-op and callers fall through to the database.
"""
import json
import os

import redis
from dotenv import load_dotenv
from redis.exceptions import RedisError

from app.core.logging_config import get_logger

load_dotenv()

logger = get_logger()

_redis_client = None


def get_redis_client():
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        return None

    try:
        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        client.ping()
    except RedisError as e:
        logger.warning(f"Redis unavailable: {e}")
        return None

    logger.info("Redis connected")
    _redis_client = client
    return _redis_client


def get_cache(key: str):
    client = get_redis_client()
    if not client:
        return None
    try:
        data = client.get(key)
    except RedisError as e:
        logger.warning(f"Cache read failed for {key}: {e}")
        return None
    return json.loads(data) if data else None


def set_cache(key: str, value, ttl: int = 60):
    client = get_redis_client()
    if not client:
        return
    try:
        client.setex(key, ttl, json.dumps(value, default=str))
    except RedisError as e:
        logger.warning(f"Cache write failed for {key}: {e}")


def delete_cache(*keys: str):
    client = get_redis_client()
    if not client or not keys:
        return
    try:
        client.delete(*keys)
    except RedisError as e:
        logger.warning(f"Cache delete failed for {keys}: {e}")


def cached(key: str, loader, ttl: int = 60):
    """Cache-aside read: return the cached JSON value or load, store and return it."""
    value = get_cache(key)
    if value is not None:
        return value

    value = loader()
    set_cache(key, value, ttl=ttl)
    return value
