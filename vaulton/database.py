"""
Shared Redis connection backing ``RedisSessionStore``.
"""

import logging
from typing import Any, Mapping, Optional

import redis

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def build_redis_client(cfg: Mapping[str, Any]) -> redis.Redis:
    """Create a Redis client from configuration without connecting."""
    options = {"decode_responses": True, "socket_connect_timeout": 5}
    url = cfg.get("REDIS_URL")
    if url:
        return redis.Redis.from_url(str(url), **options)

    return redis.Redis(
        host=cfg.get("REDIS_HOST", "localhost"),
        port=int(cfg.get("REDIS_PORT", 6379)),
        db=int(cfg.get("REDIS_DB", 0)),
        password=cfg.get("REDIS_PASSWORD") or None,
        socket_timeout=5,
        health_check_interval=30,
        **options,
    )


def init_redis(cfg: Mapping[str, Any]) -> Optional[redis.Redis]:
    """
    Connect the process-wide session Redis.

    Returns:
        The client after a successful ping, otherwise None
    """
    global _redis_client

    if _redis_client is None:
        candidate = build_redis_client(cfg)
        target = cfg.get("REDIS_URL") or f"{cfg.get('REDIS_HOST', 'localhost')}:{cfg.get('REDIS_PORT', 6379)}"
        try:
            candidate.ping()
        except redis.RedisError as e:
            logger.error(f"Session Redis unreachable at {target}: {e}")
        else:
            _redis_client = candidate
            logger.info(f"Session Redis connected: {target}")

    return _redis_client


def get_redis() -> Optional[redis.Redis]:
    """Return the connected client, if any."""
    return _redis_client


def close_redis() -> None:
    global _redis_client

    client, _redis_client = _redis_client, None
    if client is not None:
        client.close()
        logger.info("Session Redis closed")
