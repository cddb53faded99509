"""
Per-IP sliding-window request throttling.

Usage:
    from medportal.api.middleware.rate_limit import rate_limit

    # Stricter limit on a single route:
    @router.post("/auth/login", dependencies=[rate_limit(max_requests=10, window_seconds=60)])
    async def login(...):
        ...

    # The global limit is attached in main.py via RateLimitMiddleware.

With ``REDIS_URL`` configured the window lives in a Redis sorted set and is
shared by every worker; otherwise (or while Redis is unreachable) each
process keeps its own window in memory.
"""

import time
import logging
import uuid
from collections import deque
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from fastapi import Request, HTTPException, Depends
from starlette.middleware.base import BaseHTTPMiddleware

from medportal.config import get_settings
from medportal.api.responses import error_envelope

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 60


class SlidingWindow:
    """In-process fallback window (single worker only)."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._hits: dict[str, deque] = {}
        self._spans: dict[str, int] = {}
        self._last_sweep = clock()

    def __len__(self):
        return len(self._hits)

    def hit(self, key: str, max_requests: int, window: int) -> bool:
        """Record one request; return True when the key is over its limit."""
        now = self._clock()
        if now - self._last_sweep >= SWEEP_INTERVAL_SECONDS:
            self._sweep(now)
        hits = self._hits.setdefault(key, deque())
        self._spans[key] = window
        while hits and hits[0] <= now - window:
            hits.popleft()
        hits.append(now)
        return len(hits) > max_requests

    def _sweep(self, now: float):
        """Forget clients with no request inside their window."""
        stale = [key for key, hits in self._hits.items() if hits[-1] <= now - self._spans[key]]
        for key in stale:
            del self._hits[key]
            del self._spans[key]
        self._last_sweep = now

    def reset(self):
        self._hits.clear()
        self._spans.clear()
        self._last_sweep = self._clock()


_window = SlidingWindow()
_redis: Optional[aioredis.Redis] = None


def _get_redis() -> Optional[aioredis.Redis]:
    global _redis
    url = get_settings().REDIS_URL
    if not url:
        return None
    if _redis is None:
        _redis = aioredis.from_url(url, decode_responses=True)
    return _redis


async def _hit_redis(client: aioredis.Redis, key: str, max_requests: int, window: int) -> bool:
    now = time.time()
    pipeline = client.pipeline()
    pipeline.zremrangebyscore(key, 0, now - window)
    pipeline.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
    pipeline.zcard(key)
    pipeline.expire(key, window)
    results = await pipeline.execute()
    return results[2] > max_requests


async def _exceeded(key: str, max_requests: int, window: int) -> bool:
    client = _get_redis()
    if client is not None:
        try:
            return await _hit_redis(client, key, max_requests, window)
        except RedisError as exc:
            logger.warning("Redis rate limiter unavailable (%s); using in-process window", exc)
    return _window.hit(key, max_requests, window)


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def _get_client_ip(request: Request) -> str:
    """Extract client IP from request, respecting X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(max_requests: int = 60, window_seconds: int = 60, key_prefix: str = "rl"):
    """FastAPI dependency for per-route rate limiting."""

    async def _dependency(request: Request):
        key = f"{key_prefix}:{request.url.path}:{_get_client_ip(request)}"
        if await _exceeded(key, max_requests, window_seconds):
            logger.warning("Route rate limit hit for %s", key)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Max {max_requests} requests per {window_seconds}s.",
                headers={"Retry-After": str(window_seconds)},
            )

    return Depends(_dependency)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Global per-IP limit; ``max_requests <= 0`` turns it off."""

    def __init__(self, app, max_requests: int = 200, window_seconds: int = 60):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next):
        if self.max_requests > 0:
            key = f"global_rl:{_get_client_ip(request)}"
            if await _exceeded(key, self.max_requests, self.window_seconds):
                logger.warning("Global rate limit hit for %s", key)
                return error_envelope(
                    f"Rate limit exceeded. Max {self.max_requests} requests per {self.window_seconds}s.",
                    429,
                    headers={"Retry-After": str(self.window_seconds)},
                )
        return await call_next(request)
