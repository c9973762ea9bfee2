import json
from time import time
from typing import Dict, Optional, Tuple
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
import logging

import redis

from config import settings

logger = logging.getLogger(__name__)

# Routes that accept credentials get the tighter budget
CREDENTIAL_PATHS = (
    "/api/auth/signup",
    "/api/auth/login",
    "/api/auth/google",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
)


def _connect_redis():
    """Redis client for shared buckets, or None to use process memory."""
    if not settings.redis_url:
        logger.info("REDIS_URL not set. Using in-memory rate limiting.")
        return None
    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        client.ping()
        logger.info("Redis connected successfully for rate limiting")
        return client
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}. Falling back to in-memory rate limiting.")
        return None


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Per-IP rate limiter using Redis (with fallback to in-memory).
    Uses Token Bucket Algorithm with two budgets: a general one and a
    stricter one for credential routes.
    Default: 100 requests (5 on credential routes) per 15 minutes per IP.
    """

    def __init__(self, app, enabled: Optional[bool] = None, max_requests: Optional[int] = None,
                 auth_max_requests: Optional[int] = None, window_seconds: Optional[float] = None,
                 redis_client=None):
        super().__init__(app)
        self.enabled = settings.rate_limit_enabled if enabled is None else enabled
        self.window_seconds = float(window_seconds or settings.rate_limit_window_seconds)
        self.capacities = {
            "general": max_requests or settings.rate_limit_max_requests,
            "auth": auth_max_requests or settings.auth_rate_limit_max_requests,
        }
        # Fallback: in-memory storage (key -> (tokens, last_refill_ts))
        self._buckets: Dict[str, Tuple[float, float]] = {}
        if redis_client is None and self.enabled:
            redis_client = _connect_redis()
        self._redis = redis_client

    def _get_client_ip(self, request: Request) -> str:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            # Take first IP in the list
            return xff.split(",")[0].strip()
        client = request.client
        return client.host if client else "unknown"

    def _scope_for(self, path: str) -> str:
        return "auth" if path.rstrip("/") in CREDENTIAL_PATHS else "general"

    def _refill(self, tokens: float, last_refill: float, now: float, capacity: int) -> float:
        elapsed = max(0.0, now - last_refill)
        refill = (elapsed / self.window_seconds) * capacity
        return min(capacity, tokens + refill)

    def _check_rate_limit_redis(self, key: str, capacity: int) -> Optional[bool]:
        """
        Check rate limit using Redis.
        Returns True if allowed, False if limited, None if Redis failed.
        """
        try:
            now = time()
            bucket_data = self._redis.get(key)

            if bucket_data:
                # Parse stored data: {"tokens": float, "last_refill": float}
                data = json.loads(bucket_data)
                tokens = float(data.get("tokens", 0))
                last_refill = float(data.get("last_refill", now))
            else:
                # New bucket, start with full capacity
                tokens = float(capacity)
                last_refill = now

            tokens = self._refill(tokens, last_refill, now, capacity)
            if tokens < 1.0:
                return False

            bucket_data = json.dumps({"tokens": tokens - 1.0, "last_refill": now})
            self._redis.setex(key, int(self.window_seconds) + 10, bucket_data)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis rate limit check failed: {e}. Falling back to in-memory.")
            return None

    def _check_rate_limit_memory(self, key: str, capacity: int) -> bool:
        now = time()
        tokens, last_refill = self._buckets.get(key, (float(capacity), now))
        tokens = self._refill(tokens, last_refill, now, capacity)

        if tokens < 1.0:
            return False

        # Consume a token and store
        self._buckets[key] = (tokens - 1.0, now)
        return True

    async def dispatch(self, request: Request, call_next) -> Response:
        if not self.enabled or request.method == "OPTIONS":
            return await call_next(request)

        scope = self._scope_for(request.url.path)
        capacity = self.capacities[scope]
        key = f"rate_limit:{scope}:{self._get_client_ip(request)}"

        allowed = None
        if self._redis is not None:
            allowed = self._check_rate_limit_redis(key, capacity)
        if allowed is None:
            allowed = self._check_rate_limit_memory(key, capacity)

        if not allowed:
            logger.warning(f"Rate limit exceeded: {key}")
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please try again later."},
            )

        return await call_next(request)
