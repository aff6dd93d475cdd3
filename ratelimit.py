"""
Fixed-window rate limiting.

Each ``RateLimiter`` counts hits per client key inside a window. Counters live
in a ``RateLimitStore``; the in-memory store is the default and any object with
the same ``hit`` method (e.g. one backed by Redis) can be injected instead.
"""
import logging
import math
import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from fastapi import Request

from config import Settings
from errors import RateLimitExceededError

logger = logging.getLogger(__name__)


class RateLimitStore(Protocol):
    def hit(self, key: str, window_seconds: int, now: float) -> Tuple[int, float]:
        """Record a hit and return ``(hits in current window, window reset time)``."""


class InMemoryRateLimitStore:
    def __init__(self, sweep_every: int = 1000):
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._sweep_every = sweep_every
        self._hits = 0

    def __len__(self) -> int:
        return len(self._windows)

    def hit(self, key: str, window_seconds: int, now: float) -> Tuple[int, float]:
        with self._lock:
            self._hits += 1
            if self._hits >= self._sweep_every:
                self._hits = 0
                self._sweep(now)
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
            return count, reset_at

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


class RateLimiter:
    def __init__(self, name: str, limit: int, window_seconds: int,
                 store: Optional[RateLimitStore] = None, message: Optional[str] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.message = message or "Too many requests, please try again later"
        self.clock = clock

    def check(self, client: str) -> None:
        now = self.clock()
        count, reset_at = self.store.hit(f"{self.name}:{client}", self.window_seconds, now)
        if count > self.limit:
            retry_after = max(1, math.ceil(reset_at - now))
            logger.warning("Rate limit %r exceeded by %s (%d/%d)", self.name, client, count, self.limit)
            raise RateLimitExceededError(self.message, retry_after=retry_after)


def build_rate_limiters(settings: Settings, store: Optional[RateLimitStore] = None) -> Dict[str, RateLimiter]:
    store = store if store is not None else InMemoryRateLimitStore()
    return {
        "login": RateLimiter(
            "login", settings.login_rate_limit, settings.login_rate_window_seconds, store,
            "Too many login attempts, please try again later",
        ),
        "register": RateLimiter(
            "register", settings.register_rate_limit, settings.register_rate_window_seconds, store,
            "Too many registration attempts, please try again later",
        ),
        "api": RateLimiter("api", settings.api_rate_limit, settings.api_rate_window_seconds, store),
        "strict": RateLimiter("strict", settings.strict_rate_limit, settings.strict_rate_window_seconds, store),
    }


def client_key(request: Request) -> str:
    return request.client.host if request.client else "anonymous"


def rate_limit(name: str):
    """FastAPI dependency enforcing the limiter registered under ``name`` on the app."""

    def dependency(request: Request) -> None:
        limiters = getattr(request.app.state, "rate_limiters", {})
        limiter = limiters.get(name)
        if limiter is not None:
            limiter.check(client_key(request))

    return dependency
