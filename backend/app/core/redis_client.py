from __future__ import annotations

from functools import lru_cache

import redis

from app.core.config import settings


@lru_cache(maxsize=4)
def _pool(url: str) -> redis.ConnectionPool:
    return redis.ConnectionPool.from_url(url, decode_responses=True)


def get_redis(url: str | None = None) -> redis.Redis:
    return redis.Redis(connection_pool=_pool(url or settings.redis_url))
