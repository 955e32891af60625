from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Callable

from flask import Flask, current_app, request

from .errors import TooManyRequests


EXTENSION_KEY = "giftdraw.ratelimit"


@dataclass
class _Bucket:
    count: int
    reset_at: float


@dataclass
class RateLimitState:
    """Per-app fixed-window counters. Owned by the app, never module-global."""

    max_requests: int
    window_seconds: float
    clock: Callable[[], float] = time.monotonic
    buckets: dict = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)
    next_sweep: float = 0.0

    def hit(self, key: str) -> int | None:
        """Count one request for `key`. Returns seconds to wait when over the limit."""
        now = self.clock()
        with self.lock:
            if now >= self.next_sweep:
                self._prune(now)
                self.next_sweep = now + self.window_seconds
            bucket = self.buckets.get(key)
            if bucket is None or bucket.reset_at <= now:
                self.buckets[key] = _Bucket(count=1, reset_at=now + self.window_seconds)
                return None
            if bucket.count >= self.max_requests:
                return max(0, math.ceil(bucket.reset_at - now))
            bucket.count += 1
            return None

    def _prune(self, now: float) -> None:
        # caller holds the lock
        expired = [key for key, bucket in self.buckets.items() if bucket.reset_at <= now]
        for key in expired:
            del self.buckets[key]

    def clear(self) -> None:
        with self.lock:
            self.buckets.clear()


class RateLimiter:
    def __init__(self, app: Flask | None = None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> RateLimitState:
        state = RateLimitState(
            max_requests=int(app.config.get("RATE_LIMIT_MAX_REQUESTS", 100)),
            window_seconds=float(app.config.get("RATE_LIMIT_WINDOW_SECONDS", 900)),
        )
        app.extensions[EXTENSION_KEY] = state
        return state

    def shutdown(self, app: Flask) -> None:
        state = app.extensions.pop(EXTENSION_KEY, None)
        if state is not None:
            state.clear()

    @staticmethod
    def state(app: Flask | None = None) -> RateLimitState:
        app = app or current_app
        return app.extensions[EXTENSION_KEY]

    def limit(self, scope: str):
        """Decorate a view (function or MethodView method) with the app's limit."""
        def decorator(fn):
            @wraps(fn)
            def wrapper(*args, **kwargs):
                client = request.remote_addr or request.headers.get("X-Forwarded-For") or "anonymous"
                retry_after = self.state().hit(f"{scope}:{client}")
                if retry_after is not None:
                    raise TooManyRequests(
                        "Too many requests. Please try again in a moment.",
                        retry_after=retry_after,
                    )
                return fn(*args, **kwargs)
            return wrapper
        return decorator
