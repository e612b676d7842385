"""HTTP middleware: per-client fixed-window rate limiting and security headers."""
from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "cross-origin",
}


def client_ip(request: Request) -> str:
    """Client address, honouring the first hop of X-Forwarded-For."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"


@dataclass(frozen=True)
class RateLimitRule:
    path: str
    limit: int
    window_seconds: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateLimitRule":
        return cls(str(data["path"]), int(data["limit"]), float(data["window_seconds"]))


class FixedWindowLimiter:
    """Counts requests per (rule, client) in fixed windows held in memory.

    Rules match by path prefix; the longest matching prefix wins.
    """

    def __init__(self, rules: List[RateLimitRule], clock: Callable[[], float] = time.monotonic) -> None:
        self.rules = sorted(rules, key=lambda rule: len(rule.path), reverse=True)
        self.clock = clock
        self._windows: Dict[Tuple[str, str], Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def rule_for(self, path: str) -> Optional[RateLimitRule]:
        for rule in self.rules:
            if path.startswith(rule.path):
                return rule
        return None

    def hit(self, rule: RateLimitRule, client: str) -> Tuple[bool, int, float]:
        """Record one request. Returns (allowed, remaining, seconds until reset)."""
        now = self.clock()
        key = (rule.path, client)
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= rule.window_seconds:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
            if len(self._windows) > 50000:
                self._prune(now)
        reset_in = max(0.0, started + rule.window_seconds - now)
        return count <= rule.limit, max(0, rule.limit - count), reset_in

    def _prune(self, now: float) -> None:
        windows = {rule.path: rule.window_seconds for rule in self.rules}
        expired = [
            key for key, (started, _count) in self._windows.items()
            if now - started >= windows.get(key[0], 0)
        ]
        for key in expired:
            del self._windows[key]


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: FixedWindowLimiter) -> None:
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next) -> Response:
        rule = self.limiter.rule_for(request.url.path)
        if rule is None or request.method == "OPTIONS":
            return await call_next(request)

        client = client_ip(request)
        allowed, remaining, reset_in = self.limiter.hit(rule, client)
        if not allowed:
            retry_after = max(1, math.ceil(reset_in))
            logger.warning(f"Rate limit exceeded on {rule.path} for {client} ({rule.limit}/{rule.window_seconds:g}s)")
            return JSONResponse(
                status_code=429,
                content={"ok": False, "error": "rate_limited", "retryAfter": retry_after},
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(rule.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )
        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rule.limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response
