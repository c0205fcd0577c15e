import logging
import time
from threading import Lock
from typing import Callable, Dict, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Simple in-memory rate limiter using a fixed window algorithm.
    Tracks attempts per identifier (client address) within a one minute window.
    Expired entries are swept at most once per window.
    """

    def __init__(self, requests_per_minute: int = 60, window_seconds: float = 60.0, clock: Callable[[], float] = time.time):
        self.rpm = requests_per_minute
        self.window = window_seconds
        self._clock = clock
        # identifier -> (count, window_start_time)
        self.requests: Dict[str, Tuple[int, float]] = {}
        self._last_cleanup = clock()
        self._lock = Lock()

    def is_allowed(self, identifier: str) -> bool:
        now = self._clock()
        with self._lock:
            if now - self._last_cleanup > self.window:
                self._drop_expired(now)

            count, start_time = self.requests.get(identifier, (0, now))

            if now - start_time > self.window:
                # New window
                self.requests[identifier] = (1, now)
                return True

            if count >= self.rpm:
                return False

            self.requests[identifier] = (count + 1, start_time)
            return True

    def cleanup(self):
        """Drop entries whose window has passed."""
        with self._lock:
            self._drop_expired(self._clock())

    def _drop_expired(self, now: float):
        keys_to_delete = [k for k, v in self.requests.items() if now - v[1] > self.window]
        for k in keys_to_delete:
            del self.requests[k]
        self._last_cleanup = now


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
        return response
