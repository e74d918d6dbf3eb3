"""
ThesisMaster Backend - Rate Limiting
=====================================

What:  Per-caller sliding window rate limiter and the middleware that applies it.
How:   SlidingWindowRateLimiter keeps, per key, the timestamps of the requests
       inside the window. Keys live in an OrderedDict ordered by last use;
       once max_clients keys are tracked, the least recently seen key is
       evicted, so memory stays bounded no matter how many callers appear.
       A check prunes only that key's expired timestamps.
Who:   main.create_app() builds one limiter from settings and hands it to
       RateLimitMiddleware; tests build their own with a fake clock.

Key: the X-User-Id header set by the auth gateway, else the client IP.

Algorithm: Sliding Window Log
    1. Drop the key's timestamps older than now - window
    2. If the remaining count >= limit, reject with 429 and Retry-After
    3. Otherwise record now and let the request through

Single-process only: state is in memory, per worker.
"""

import logging
import time
from collections import OrderedDict, deque
from typing import Callable, Deque

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from thesismaster.exceptions import RateLimitExceededError
from thesismaster.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Bounded in-memory sliding window limiter.

    Args:
        max_requests:   Requests allowed per key within one window.
        window_seconds: Window length.
        max_clients:    Upper bound on tracked keys (LRU eviction beyond it).
        clock:          Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        max_clients: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1 or window_seconds <= 0 or max_clients < 1:
            raise ValueError("max_requests, window_seconds and max_clients must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_clients = max_clients
        self._clock = clock
        self._hits: "OrderedDict[str, Deque[float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._hits)

    def __contains__(self, key: str) -> bool:
        return key in self._hits

    def hit(self, key: str) -> None:
        """
        Records one request for `key`.

        Raises:
            RateLimitExceededError: The key already used its quota for the
                current window; retry_after says when the oldest hit expires.
        """
        now = self._clock()
        window_start = now - self.window_seconds

        hits = self._hits.get(key)
        if hits is None:
            hits = deque()
            self._hits[key] = hits
            while len(self._hits) > self.max_clients:
                evicted, _ = self._hits.popitem(last=False)
                logger.debug("Rate limiter evicted least recently seen key %s", evicted)
        else:
            self._hits.move_to_end(key)

        while hits and hits[0] <= window_start:
            hits.popleft()

        if len(hits) >= self.max_requests:
            retry_after = int(hits[0] + self.window_seconds - now) + 1
            raise RateLimitExceededError(
                retry_after=retry_after,
                context={"key": key, "requests": len(hits), "window": self.window_seconds},
            )

        hits.append(now)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies a SlidingWindowRateLimiter to every request except health and docs.

    Answers 429 itself: exceptions raised in middleware never reach the
    app's exception handlers.
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app: ASGIApp, limiter: SlidingWindowRateLimiter):
        super().__init__(app)
        self.limiter = limiter

    @staticmethod
    def client_key(request: Request) -> str:
        user_id = request.headers.get("X-User-Id")
        if user_id:
            return f"user:{user_id}"
        host = getattr(request.client, "host", None) if request.client else None
        return f"ip:{host or 'unknown'}"

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        key = self.client_key(request)
        try:
            self.limiter.hit(key)
        except RateLimitExceededError as e:
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ss window",
                key,
                self.limiter.max_requests,
                self.limiter.window_seconds,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": e.message,
                    "details": {"retry_after": e.retry_after},
                    "request_id": request_id_var.get("") or None,
                },
                headers={"Retry-After": str(e.retry_after)},
            )

        return await call_next(request)
