"""
Rate limiting middleware.
"""

import logging
import math
import threading
import time
from collections.abc import Callable
from typing import Any

from freya.exceptions import TooManyRequests
from freya.middleware.base import Middleware
from freya.request import Request
from freya.response import Response
from freya.types import Next

logger = logging.getLogger("freya.ratelimit")

KeyFunc = Callable[[Request], str]

# Full sweep of expired keys every N hits
_CLEANUP_EVERY: int = 1000


class RateLimitStore:
    """
    Sliding-window hit counter keyed by client.

    Thread-safe; one store may be shared by several middleware instances
    and by concurrent requests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._hits: dict[str, list[float]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._since_cleanup = 0

    def now(self) -> float:
        return self._clock()

    def hit(self, key: str, window_seconds: float) -> tuple[int, float]:
        """
        Record a hit for *key*.

        Returns ``(count, oldest)``: hits inside the window including this
        one, and the timestamp of the oldest of them.
        """
        now = self._clock()
        window_start = now - window_seconds
        with self._lock:
            timestamps = [t for t in self._hits.get(key, []) if t > window_start]
            timestamps.append(now)
            self._hits[key] = timestamps

            self._since_cleanup += 1
            if self._since_cleanup >= _CLEANUP_EVERY:
                self._cleanup(window_start)
                self._since_cleanup = 0

            return len(timestamps), timestamps[0]

    def count(self, key: str, window_seconds: float) -> int:
        window_start = self._clock() - window_seconds
        with self._lock:
            return sum(1 for t in self._hits.get(key, []) if t > window_start)

    def undo(self, key: str) -> None:
        """Forget the most recent hit for *key*."""
        with self._lock:
            timestamps = self._hits.get(key)
            if timestamps:
                timestamps.pop()

    def reset(self, key: str) -> None:
        with self._lock:
            self._hits.pop(key, None)

    def _cleanup(self, window_start: float) -> None:
        for key in list(self._hits):
            live = [t for t in self._hits[key] if t > window_start]
            if live:
                self._hits[key] = live
            else:
                del self._hits[key]


def _client_ip(request: Request) -> str:
    return request.ip


class RateLimitMiddleware(Middleware):
    """
    Per-client rate limiting using a sliding window counter.

    Raises :class:`~freya.exceptions.TooManyRequests` (429, with
    ``Retry-After``) once a client exceeds the limit.

    Usage:
        app.use(RateLimitMiddleware(
            max_requests=100,   # requests per window
            window_seconds=60,  # window duration
        ))
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: int = 60,
        store: RateLimitStore | None = None,
        key_func: KeyFunc | None = None,
        skip: Callable[[Request], bool] | None = None,
        message: str = "Too many requests, please try again later",
        legacy_headers: bool = True,
        standard_headers: bool = True,
        skip_successful_requests: bool = False,
        skip_failed_requests: bool = False,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self.store = store or RateLimitStore()
        self._key_func = key_func or _client_ip
        self._skip = skip
        self._message = message
        self._legacy_headers = legacy_headers
        self._standard_headers = standard_headers
        self._skip_successful = skip_successful_requests
        self._skip_failed = skip_failed_requests

    def process(self, request: Request, response: Response, next: Next) -> None:
        if self._skip is not None and self._skip(request):
            return next()

        key = self._key_func(request)
        count, oldest = self.store.hit(key, self._window)
        remaining = max(0, self._max_requests - count)
        reset = max(1, math.ceil(self._window - (self.store.now() - oldest)))

        if self._legacy_headers:
            response.set_header("X-RateLimit-Limit", str(self._max_requests))
            response.set_header("X-RateLimit-Remaining", str(remaining))
            response.set_header("X-RateLimit-Reset", str(reset))
        if self._standard_headers:
            response.set_header("RateLimit-Limit", str(self._max_requests))
            response.set_header("RateLimit-Remaining", str(remaining))
            response.set_header("RateLimit-Reset", str(reset))

        if count > self._max_requests:
            logger.warning(
                "Rate limit exceeded for %s (%d/%d in %ds)",
                key,
                count,
                self._max_requests,
                self._window,
            )
            raise TooManyRequests(self._message, retry_after=reset)

        if self._skip_successful or self._skip_failed:
            def forget_hit(res: Response) -> None:
                failed = res.status_code >= 400
                if (failed and self._skip_failed) or (not failed and self._skip_successful):
                    self.store.undo(key)

            response.before_send(forget_hit)

        next()


def by_user(**options: Any) -> RateLimitMiddleware:
    """Limit per authenticated user, falling back to the client IP."""

    def key(request: Request) -> str:
        user_id = getattr(request.user, "id", None)
        return f"user:{user_id}" if user_id is not None else f"ip:{request.ip}"

    return RateLimitMiddleware(key_func=key, **options)


def by_api_key(header_name: str = "x-api-key", **options: Any) -> RateLimitMiddleware:
    """Limit per API key header, falling back to the client IP."""

    def key(request: Request) -> str:
        api_key = request.get_header(header_name)
        return f"apikey:{api_key}" if api_key else f"ip:{request.ip}"

    return RateLimitMiddleware(key_func=key, **options)
