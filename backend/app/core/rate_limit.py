from __future__ import annotations

import logging
from dataclasses import dataclass

import redis
from fastapi import Depends, HTTPException, Request

from app.core import redis_client
from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    key: str
    limit: int
    window_seconds: int
    remaining: int


def client_ip(request: Request) -> str:
    if settings.trust_proxy_headers:
        xri = str(request.headers.get("x-real-ip") or "").strip()
        if xri:
            return xri
        xff = request.headers.get("x-forwarded-for")
        if xff:
            ip = xff.split(",")[0].strip()
            if ip:
                return ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(*, key_prefix: str, limit: int, window_seconds: int):
    """Fixed-window limiter per client IP and path.

    Fails open: when Redis is unreachable the request goes through.
    """

    async def _dep(request: Request) -> RateLimit:
        key = f"rl:{key_prefix}:{request.url.path}:{client_ip(request)}"
        try:
            r = redis_client.get_redis()
            current = int(r.incr(key))
            if current == 1:
                r.expire(key, int(window_seconds))
        except redis.RedisError:
            logger.warning("rate limiter unavailable, letting %s through", key)
            return RateLimit(key=key, limit=limit, window_seconds=window_seconds, remaining=limit)

        if current > limit:
            ttl = r.ttl(key)
            retry_after = int(ttl) if ttl and ttl > 0 else int(window_seconds)
            raise HTTPException(
                status_code=429,
                detail="rate limit exceeded",
                headers={"Retry-After": str(retry_after)},
            )

        return RateLimit(key=key, limit=limit, window_seconds=window_seconds, remaining=limit - current)

    return Depends(_dep)
