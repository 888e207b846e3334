"""Redis connection pool.

Questboard keeps no durable state in Redis: it only holds the rate limiter's
per-window counters, so the API serves requests when Redis is down.
"""

import redis.asyncio as redis
from redis.exceptions import RedisError

_KEY_PREFIX = "qb"

_pool: redis.Redis | None = None


async def init_redis(url: str) -> None:
    """Initialize the Redis connection pool."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
        socket_connect_timeout=1,
    )


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the Redis client. Raises RuntimeError before ``init_redis``."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


def rate_limit_key(client_key: str, window: int) -> str:
    """Counter key for one client in one fixed window."""
    return f"{_KEY_PREFIX}:ratelimit:{client_key}:{window}"


async def redis_status() -> str:
    """``"ok"`` or a short error description, for the readiness probe."""
    try:
        await get_redis().ping()
    except RuntimeError:
        return "error: not initialized"
    except (RedisError, OSError) as exc:
        return f"error: {exc}"
    return "ok"
