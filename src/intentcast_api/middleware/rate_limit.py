"""Per-client rate limiting, separate budgets for reads and writes."""
from __future__ import annotations

import json
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from intentcast_protocol.auth import WALLET_HEADER

from .logging import get_client_ip

READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass
class RateLimitConfig:
    """Rate limit configuration."""
    read_requests_per_minute: int = 100
    write_requests_per_minute: int = 20


@dataclass
class TokenBucket:
    """A full bucket holds one minute's allowance and refills continuously."""
    capacity: int
    tokens: float
    last_update: float

    def take(self, now: float) -> bool:
        refill = (now - self.last_update) * (self.capacity / 60.0)
        self.tokens = min(float(self.capacity), self.tokens + refill)
        self.last_update = now
        if self.tokens < 1:
            return False
        self.tokens -= 1
        return True

    def seconds_until_token(self) -> int:
        missing = 1 - self.tokens
        return max(1, math.ceil(missing * 60.0 / self.capacity))


class InMemoryRateLimiter:
    """Token-bucket limiter keyed by client.

    Single-instance only: limits are not shared between processes.
    A bucket left idle for a full refill period is indistinguishable from a
    new one, so such buckets are dropped on a cleanup interval.
    """

    CLEANUP_INTERVAL_SECONDS = 60.0
    IDLE_SECONDS = 60.0

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
    ):
        self.config = config
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._cleanup_interval = cleanup_interval_seconds
        self._last_cleanup = clock()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup >= self._cleanup_interval:
            self._drop_idle(now)

    def cleanup(self, now: Optional[float] = None) -> int:
        """Drop idle buckets.

        Returns:
            Number of buckets removed.
        """
        with self._lock:
            return self._drop_idle(self._clock() if now is None else now)

    def _drop_idle(self, now: float) -> int:
        idle = [
            key for key, bucket in self._buckets.items()
            if now - bucket.last_update >= self.IDLE_SECONDS
        ]
        for key in idle:
            del self._buckets[key]
        self._last_cleanup = now
        return len(idle)

    @staticmethod
    def client_key(request: Request) -> str:
        wallet = request.headers.get(WALLET_HEADER, "").strip()
        if wallet:
            return f"wallet:{wallet.lower()}"
        return f"ip:{get_client_ip(request)}"

    def check_rate_limit(self, request: Request) -> tuple[bool, dict[str, str]]:
        """
        Check if request is within rate limits.

        Returns:
            Tuple of (allowed, headers) where headers contain rate limit info.
        """
        is_read = request.method.upper() in READ_METHODS
        limit = self.config.read_requests_per_minute if is_read else self.config.write_requests_per_minute
        key = f"{'read' if is_read else 'write'}:{self.client_key(request)}"

        with self._lock:
            now = self._clock()
            self._maybe_cleanup(now)
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(capacity=limit, tokens=float(limit), last_update=now)
                self._buckets[key] = bucket
            allowed = bucket.take(now)
            remaining = int(bucket.tokens)
            retry_after = 0 if allowed else bucket.seconds_until_token()

        headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(max(0, remaining)),
            "X-RateLimit-Reset": str(int(time.time()) + 60),
        }
        if not allowed:
            headers["Retry-After"] = str(retry_after)
        return allowed, headers

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware for rate limiting."""

    def __init__(
        self,
        app,
        config: Optional[RateLimitConfig] = None,
        exclude_paths: Optional[list[str]] = None,
        limiter: Optional[InMemoryRateLimiter] = None,
    ):
        super().__init__(app)
        self.limiter = limiter or InMemoryRateLimiter(config or RateLimitConfig())
        self.exclude_paths = exclude_paths or ["/", "/health", "/docs", "/openapi.json"]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        allowed, headers = self.limiter.check_rate_limit(request)

        if not allowed:
            # RFC 7807 Problem Details format
            error_content = {
                "type": "https://intentcast.dev/errors/rate-limit-exceeded",
                "title": "Rate Limit Exceeded",
                "status": 429,
                "detail": "Too many requests. Please wait before making another request.",
                "instance": request.url.path,
                "request_id": getattr(request.state, "request_id", "unknown"),
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "error_code": "RATE_LIMIT_EXCEEDED",
                "retry_after_seconds": int(headers["Retry-After"]),
            }
            return Response(
                content=json.dumps(error_content),
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                headers=headers,
                media_type="application/problem+json",
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response
