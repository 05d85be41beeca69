from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable

import redis.asyncio as redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from femisse.observability import client_ip

logger = logging.getLogger("femisse.rate_limit")

# INCR + EXPIRE atômico por janela fixa
_REDIS_SCRIPT = (
    "local current = redis.call('INCR', KEYS[1]) "
    "if current == 1 then redis.call('EXPIRE', KEYS[1], ARGV[1]) end "
    "local ttl = redis.call('TTL', KEYS[1]) "
    "return {current, ttl}"
)


@dataclass(frozen=True)
class RateLimitRule:
    path: str
    max_requests: int
    window_seconds: int
    methods: frozenset[str] | None = frozenset({"POST"})
    message: str = "Muitas requisições. Tente novamente em instantes."


@dataclass
class LimitResult:
    allowed: bool
    remaining: int
    retry_after: int = 0


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, rules: Iterable[RateLimitRule], redis_url: str | None = None) -> None:
        super().__init__(app)
        self._rules = list(rules)
        self._hits: dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._redis = redis.from_url(redis_url, encoding="utf-8", decode_responses=True) if redis_url else None
        self._redis_error_logged = False

    async def dispatch(self, request: Request, call_next) -> Response:
        rule = self._match_rule(request)
        if rule is None:
            return await call_next(request)

        key = f"{client_ip(request) or 'unknown'}:{rule.path}:{request.method}"
        result = await self._check_limit(key, rule)
        if not result.allowed:
            logger.warning("Rate limit exceeded path=%s client=%s", rule.path, key.split(":")[0])
            return JSONResponse(
                {"detail": rule.message, "retry_after": result.retry_after},
                status_code=429,
                headers={
                    "Retry-After": str(result.retry_after),
                    "X-RateLimit-Limit": str(rule.max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rule.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return response

    async def _check_limit(self, key: str, rule: RateLimitRule) -> LimitResult:
        if self._redis is None:
            return await self._check_memory(key, rule)

        try:
            now = int(time.time())
            redis_key = f"rl:{key}:{now - (now % rule.window_seconds)}"
            current, ttl = await self._redis.eval(_REDIS_SCRIPT, 1, redis_key, rule.window_seconds)
            current = int(current)
            if current > rule.max_requests:
                return LimitResult(False, 0, max(1, int(ttl or rule.window_seconds)))
            return LimitResult(True, rule.max_requests - current)
        except redis.RedisError as exc:
            if not self._redis_error_logged:
                logger.warning("Redis rate limiting failed; falling back to memory: %s", exc)
                self._redis_error_logged = True
            return await self._check_memory(key, rule)

    async def _check_memory(self, key: str, rule: RateLimitRule) -> LimitResult:
        """Janela deslizante em memória, por processo."""
        now = time.monotonic()
        async with self._lock:
            bucket = self._hits.setdefault(key, deque())
            while bucket and bucket[0] <= now - rule.window_seconds:
                bucket.popleft()
            if len(bucket) >= rule.max_requests:
                return LimitResult(False, 0, max(1, int(rule.window_seconds - (now - bucket[0]))))
            bucket.append(now)
            return LimitResult(True, rule.max_requests - len(bucket))

    def _match_rule(self, request: Request) -> RateLimitRule | None:
        path = request.url.path
        method = request.method.upper()
        for rule in self._rules:
            if path != rule.path and not path.startswith(rule.path.rstrip("/") + "/"):
                continue
            if rule.methods and method not in rule.methods:
                continue
            return rule
        return None
