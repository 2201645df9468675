# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

from __future__ import annotations

import functools
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from stepunity.shared.config.settings import RateLimitConfig
from stepunity.shared.errors import RateLimitedError
from stepunity.shared.logging import logger
from stepunity.shared.utils.http import client_ip


@dataclass
class Bucket:
    timestamps: deque[float]


class InMemoryRateLimiter:
    SWEEP_EVERY = 256

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limit = max(1, int(limit))
        self._window = max(0.1, float(window_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: dict[str, Bucket] = {}
        self._hits_since_sweep = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def hit(self, key: str) -> float | None:
        """Record a hit for ``key``; return seconds to wait when over budget."""
        now = self._clock()
        with self._lock:
            self._hits_since_sweep += 1
            if self._hits_since_sweep >= self.SWEEP_EVERY:
                self._sweep(now)
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = Bucket(deque(maxlen=self._limit))
            # Drop old
            while bucket.timestamps and (now - bucket.timestamps[0]) >= self._window:
                bucket.timestamps.popleft()
            if len(bucket.timestamps) >= self._limit:
                return self._window - (now - bucket.timestamps[0])
            bucket.timestamps.append(now)
            return None

    def _sweep(self, now: float) -> None:
        # Buckets whose newest hit left the window hold no budget; drop them
        idle = [
            key
            for key, bucket in self._buckets.items()
            if not bucket.timestamps or (now - bucket.timestamps[-1]) >= self._window
        ]
        for key in idle:
            del self._buckets[key]
        self._hits_since_sweep = 0

    def allow(self, key: str) -> bool:
        return self.hit(key) is None

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


class RateLimiterRegistry:
    """One independent sliding-window limiter per named endpoint budget."""

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._enabled = enabled
        self._clock = clock
        self._limiters: dict[str, InMemoryRateLimiter] = {}
        self._lock = threading.Lock()

    def _limiter(self, name: str) -> InMemoryRateLimiter:
        with self._lock:
            limiter = self._limiters.get(name)
            if limiter is None:
                limit, window = self._config.budget(name)
                limiter = InMemoryRateLimiter(limit, window, clock=self._clock)
                self._limiters[name] = limiter
            return limiter

    def check(self, name: str, key: str) -> None:
        if not self._enabled:
            return
        retry_after = self._limiter(name).hit(key)
        if retry_after is not None:
            logger.warning(f"Rate limit '{name}' exceeded for {key}")
            raise RateLimitedError(retry_after)

    def limit(self, name: str):
        def decorator(f: Callable):
            @functools.wraps(f)
            def wrapper(*args, **kwargs):
                self.check(name, client_ip())
                return f(*args, **kwargs)

            return wrapper

        return decorator

    def reset(self) -> None:
        with self._lock:
            for limiter in self._limiters.values():
                limiter.reset()


__all__ = ["InMemoryRateLimiter", "RateLimiterRegistry"]
