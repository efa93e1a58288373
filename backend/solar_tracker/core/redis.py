"""Async Redis connection manager for the progress cache backend."""

import redis.asyncio as aioredis

from solar_tracker.core.config import settings


async def init_redis(app_state: object) -> aioredis.Redis:
    """Initialize the async Redis connection and store it on app.state."""
    global _fallback_client
    client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    # Verify connectivity
    await client.ping()
    app_state.redis = client  # type: ignore[attr-defined]
    _fallback_client = client
    return client


async def close_redis(app_state: object) -> None:
    """Close the Redis connection stored on app.state."""
    global _fallback_client
    client: aioredis.Redis | None = getattr(app_state, "redis", None)
    if client is not None:
        await client.aclose()
        app_state.redis = None  # type: ignore[attr-defined]
    _fallback_client = None


def get_redis() -> aioredis.Redis:
    """Accessor for non-request contexts such as the progress cache.

    Raises RuntimeError until init_redis() has run.
    """
    if _fallback_client is None:
        raise RuntimeError("Redis client not initialized. Call init_redis() first.")
    return _fallback_client


_fallback_client: aioredis.Redis | None = None
