"""Per-key sliding-log rate limiting with bounded memory.

Each key owns a deque of admission timestamps inside the trailing window.
Admission is ``N`` requests per ``W`` seconds over *any* trailing window, not
per fixed bucket, so a burst straddling a bucket boundary cannot double the
allowance.

Memory stays bounded two ways:

* a key's deque never holds more than ``N`` timestamps, and
* keys whose timestamps have all aged out are deleted by ``prune()``, which
  runs on a wall-clock interval or when the key count passes ``max_keys``.

Thread-safe: the read-prune-append sequence and pruning share one
``threading.Lock``. This is an in-process limiter; replicas do not share state.
"""

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from time import monotonic


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: float | None = None


@dataclass
class RateBucket:
    """Ordered admission timestamps for one key."""

    timestamps: deque[float] = field(default_factory=deque)

    def prune(self, cutoff: float) -> None:
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


class SlidingWindowRateLimiter:
    def __init__(
        self,
        max_requests: int = 20,
        window_seconds: float = 60.0,
        prune_interval_seconds: float = 60.0,
        max_keys: int = 10_000,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._prune_interval_seconds = prune_interval_seconds
        self._max_keys = max_keys
        self._clock = clock
        self._buckets: dict[str, RateBucket] = {}
        self._lock = threading.Lock()
        self._last_prune = clock()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def admit(self, key: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            self._maybe_prune_locked(now)

            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = RateBucket()
                self._buckets[key] = bucket
            bucket.prune(now - self._window_seconds)

            if len(bucket.timestamps) >= self._max_requests:
                oldest = bucket.timestamps[0]
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    retry_after=oldest + self._window_seconds - now,
                )

            bucket.timestamps.append(now)
            return RateLimitDecision(
                allowed=True,
                remaining=self._max_requests - len(bucket.timestamps),
            )

    def prune(self) -> int:
        """Drop keys with no timestamps left in the window. Returns the number removed."""
        with self._lock:
            return self._prune_locked(self._clock())

    def key_count(self) -> int:
        with self._lock:
            return len(self._buckets)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._last_prune = self._clock()

    def _maybe_prune_locked(self, now: float) -> None:
        interval_elapsed = now - self._last_prune >= self._prune_interval_seconds
        if interval_elapsed or len(self._buckets) > self._max_keys:
            self._prune_locked(now)

    def _prune_locked(self, now: float) -> int:
        cutoff = now - self._window_seconds
        stale = []
        for key, bucket in self._buckets.items():
            bucket.prune(cutoff)
            if not bucket.timestamps:
                stale.append(key)
        for key in stale:
            del self._buckets[key]
        self._last_prune = now
        return len(stale)
