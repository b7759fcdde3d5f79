"""In-memory token bucket rate limiter keyed by string.

Buckets refill in whole windows: every full ``window_ms`` that elapsed since
the bucket was last observed restores ``capacity`` tokens, capped at
``capacity``. The reference point moves on every check, so elapsed time is
measured from the previous call rather than from a window boundary.

State lives in process memory only; N replicas enforce ``capacity * N``.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, MutableMapping, Optional


class RateLimitConfigError(ValueError):
    """Raised when a rate limit policy cannot admit anything sensibly."""


@dataclass(frozen=True)
class RateLimitConfig:
    capacity: int = 10
    window_ms: int = 60_000

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise RateLimitConfigError(f"capacity must be positive, got {self.capacity}")
        if self.window_ms <= 0:
            raise RateLimitConfigError(f"window_ms must be positive, got {self.window_ms}")


class Bucket:
    __slots__ = ("tokens", "updated_at")

    def __init__(self, tokens: int, updated_at: float) -> None:
        self.tokens = tokens
        self.updated_at = updated_at

    def __repr__(self) -> str:
        return f"Bucket(tokens={self.tokens}, updated_at={self.updated_at})"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    tokens: int


def wall_clock_ms() -> float:
    return time.time() * 1000.0


DEFAULT_CONFIG = RateLimitConfig()


class RateLimiter:
    """Admit or reject actions per key using a lazily refilled bucket."""

    def __init__(
        self,
        storage: Optional[MutableMapping[str, Bucket]] = None,
        clock: Callable[[], float] = wall_clock_ms,
    ) -> None:
        self._buckets: MutableMapping[str, Bucket] = {} if storage is None else storage
        self._clock = clock
        self._lock = threading.Lock()

    def check(self, key: str, config: RateLimitConfig = DEFAULT_CONFIG) -> Decision:
        capacity = config.capacity
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = Bucket(capacity, now)

            delta = now - bucket.updated_at
            refill = int(delta // config.window_ms) * capacity
            bucket.tokens = min(capacity, bucket.tokens + max(refill, 0))
            # a clock stepping backwards must not rewind the reference point
            bucket.updated_at = max(bucket.updated_at, now)

            if bucket.tokens <= 0:
                bucket.tokens = 0
                self._buckets[key] = bucket
                return Decision(allowed=False, tokens=0)

            bucket.tokens -= 1
            self._buckets[key] = bucket
            return Decision(allowed=True, tokens=bucket.tokens)

    def peek(self, key: str) -> Optional[Bucket]:
        return self._buckets.get(key)

    def evict_idle(self, idle_ms: float) -> int:
        """Drop buckets not observed for at least ``idle_ms``.

        Safe for admission as long as ``idle_ms`` is no shorter than the
        longest window in use: such a bucket would be back at capacity on
        its next check anyway.
        """

        with self._lock:
            now = self._clock()
            stale = [
                key
                for key, bucket in self._buckets.items()
                if now - bucket.updated_at >= idle_ms
            ]
            for key in stale:
                del self._buckets[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()

    def __len__(self) -> int:
        return len(self._buckets)


limiter = RateLimiter()


def check(key: str, config: RateLimitConfig = DEFAULT_CONFIG) -> Decision:
    """Run ``key`` through the process-wide limiter."""

    return limiter.check(key, config)
