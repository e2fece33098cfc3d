"""
HTTP protections: fixed security headers and per-client rate limiting.

Rate limit counters live in memory for tests/local runs and in Redis for
production so every server process shares one window per client.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


def content_security_policy(connect_origin: Optional[str] = None) -> str:
    connect_src = ["'self'"]
    if connect_origin:
        connect_src.append(connect_origin)
    directives = [
        ("default-src", ["'self'"]),
        (
            "script-src",
            ["'self'", "'unsafe-inline'", "'unsafe-eval'", "https://apis.google.com"],
        ),
        ("style-src", ["'self'", "'unsafe-inline'", "https://fonts.googleapis.com"]),
        ("img-src", ["'self'", "data:", "https://via.placeholder.com"]),
        ("font-src", ["'self'", "https://fonts.gstatic.com"]),
        ("connect-src", connect_src),
        ("frame-ancestors", ["'none'"]),
        ("form-action", ["'self'"]),
        ("base-uri", ["'self'"]),
        ("object-src", ["'none'"]),
        ("upgrade-insecure-requests", []),
    ]
    return "; ".join(
        " ".join([name, *sources]) if sources else name for name, sources in directives
    )


def security_headers(connect_origin: Optional[str] = None) -> dict[str, str]:
    return {
        "Content-Security-Policy": content_security_policy(connect_origin),
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-site",
        "Origin-Agent-Cluster": "?1",
        "Referrer-Policy": "no-referrer",
        "Strict-Transport-Security": "max-age=15552000; includeSubDomains; preload",
        "X-Content-Type-Options": "nosniff",
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "X-Frame-Options": "DENY",
        "X-Permitted-Cross-Domain-Policies": "none",
        "X-XSS-Protection": "0",
    }


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float


class RateLimiter(Protocol):
    """Fixed-window request counter keyed by client."""

    def hit(self, key: str) -> RateLimitResult:
        ...


@dataclass
class InMemoryRateLimiter:
    """Per-process fixed-window counter for testing/dev."""

    max_requests: int = 100
    window_seconds: float = 15 * 60
    clock: Callable[[], float] = time.monotonic
    windows: dict[str, tuple[float, int]] = field(default_factory=dict)

    def hit(self, key: str) -> RateLimitResult:
        now = self.clock()
        expired = [
            client
            for client, (started, _) in self.windows.items()
            if now - started >= self.window_seconds
        ]
        for client in expired:
            del self.windows[client]
        started, count = self.windows.get(key, (now, 0))
        count += 1
        self.windows[key] = (started, count)
        return RateLimitResult(
            allowed=count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(self.max_requests - count, 0),
            reset_after=max(self.window_seconds - (now - started), 0.0),
        )

    def reset(self) -> None:
        self.windows.clear()


@dataclass
class RedisRateLimiter:
    """Redis-backed fixed window using INCR with a key expiry."""

    url: str
    max_requests: int = 100
    window_seconds: int = 15 * 60
    key_prefix: str = "marketdesk:ratelimit"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def hit(self, key: str) -> RateLimitResult:
        redis_key = f"{self.key_prefix}:{key}"
        try:
            pipe = self.client.pipeline()
            pipe.incr(redis_key)
            pipe.ttl(redis_key)
            count, ttl = pipe.execute()
            if ttl is None or ttl < 0:
                self.client.expire(redis_key, self.window_seconds)
                ttl = self.window_seconds
        except redis_exceptions.ConnectionError:
            # Connection resets can happen on managed Redis. Let the request
            # through and reconnect for the next one.
            self.client = redis.Redis.from_url(self.url)
            return RateLimitResult(True, self.max_requests, self.max_requests, 0.0)
        return RateLimitResult(
            allowed=count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(self.max_requests - count, 0),
            reset_after=float(ttl),
        )
