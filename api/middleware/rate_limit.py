"""
Request rate limiting for the Lead Qualification Engine API.

RequestWindows keeps the request times of each client inside a sliding
window; the middleware consults it and answers 429 with Retry-After.
Clients that fall silent are dropped by prune().
"""

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

EXEMPT_PATHS = ("/health", "/metrics", "/docs", "/openapi.json")


@dataclass(frozen=True)
class WindowDecision:
    allowed: bool
    remaining: int
    retry_after_seconds: float = 0.0


class RequestWindows:
    """Sliding-window request counter per client."""

    def __init__(
        self,
        limit: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, client_id: str) -> WindowDecision:
        """Record one request for client_id unless it is over the limit."""
        now = self._clock()
        window_start = now - self.window_seconds

        with self._lock:
            hits = self._hits.setdefault(client_id, deque())
            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= self.limit:
                return WindowDecision(
                    allowed=False,
                    remaining=0,
                    retry_after_seconds=hits[0] - window_start,
                )

            hits.append(now)
            return WindowDecision(allowed=True, remaining=self.limit - len(hits))

    def prune(self) -> int:
        """Drop clients with no request inside the window. Returns the number removed."""
        window_start = self._clock() - self.window_seconds
        with self._lock:
            idle = [cid for cid, hits in self._hits.items() if not hits or hits[-1] <= window_start]
            for client_id in idle:
                del self._hits[client_id]
        return len(idle)

    def __len__(self) -> int:
        return len(self._hits)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects clients over their request window with 429."""

    def __init__(self, app, windows: RequestWindows):
        super().__init__(app)
        self.windows = windows

    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_id = client_identity(request)
        decision = self.windows.hit(client_id)

        if not decision.allowed:
            retry_after = max(1, math.ceil(decision.retry_after_seconds))
            logger.warning(f"Rate limit exceeded for {client_id}, retry in {retry_after}s")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "rate_limited",
                    "detail": "Too many requests",
                    "retry_after_ms": int(decision.retry_after_seconds * 1000),
                },
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.windows.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response


def client_identity(request: Request) -> str:
    """Client key: X-Client-Id header when present, otherwise the peer address."""
    client_id = request.headers.get("X-Client-Id")
    if client_id:
        return f"client:{client_id[:64]}"
    return f"ip:{request.client.host}" if request.client else "ip:unknown"
