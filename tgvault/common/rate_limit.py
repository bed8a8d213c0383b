"""Per-client token bucket rate limiter.

Each client key owns a bucket of capacity ``C`` refilled at ``R`` tokens per
second. Refill is lazy: a bucket is topped up from the monotonic clock when
it is checked, so there is no background timer. Buckets are created full on
first sight and swept once idle for longer than the staleness window.

Thread-safe for concurrent access within a single process. The table lock
only guards bucket lookup and eviction; the check-and-decrement runs under
the bucket's own lock, so distinct clients never wait on each other.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from tgvault.domain.errors import RateLimitedError
from tgvault.infra.observability.metrics import RATE_LIMIT_BUCKETS, RATE_LIMIT_REJECTIONS

DEFAULT_CAPACITY = 60
DEFAULT_REFILL_PER_SECOND = 1.0
DEFAULT_STALE_AFTER_SECONDS = 300.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


class RateLimitConfigError(ValueError):
    """Raised when rate limit configuration is invalid."""


@dataclass(frozen=True)
class RateLimitConfig:
    """Rate limiting configuration (immutable).

    Attributes:
        capacity: Maximum burst size (bucket capacity).
        refill_per_second: Steady-state requests per second.
        stale_after_seconds: Idle time after which a bucket may be evicted.
        sweep_interval_seconds: Minimum time between eviction sweeps.
    """

    capacity: int = DEFAULT_CAPACITY
    refill_per_second: float = DEFAULT_REFILL_PER_SECOND
    stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise RateLimitConfigError(
                f"RATE_LIMIT_CAPACITY must be a positive integer, got {self.capacity}"
            )
        if self.refill_per_second <= 0:
            raise RateLimitConfigError(
                "RATE_LIMIT_REFILL_PER_SECOND must be positive, "
                f"got {self.refill_per_second}"
            )
        if self.stale_after_seconds <= 0:
            raise RateLimitConfigError(
                "RATE_LIMIT_STALE_SECONDS must be positive, "
                f"got {self.stale_after_seconds}"
            )
        if self.sweep_interval_seconds < 0:
            raise RateLimitConfigError(
                "RATE_LIMIT_SWEEP_INTERVAL_SECONDS must not be negative, "
                f"got {self.sweep_interval_seconds}"
            )


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed.
        remaining_tokens: Whole tokens left after this check.
        retry_after_seconds: Seconds until a token is available (None if allowed).
    """

    allowed: bool
    remaining_tokens: int
    retry_after_seconds: int | None


class _TokenBucket:
    """Token bucket for a single client key."""

    __slots__ = ("tokens", "last_refill", "lock")

    def __init__(self, capacity: float, now: float) -> None:
        self.tokens = capacity
        self.last_refill = now
        self.lock = threading.Lock()

    def try_consume(
        self, *, capacity: float, refill_per_second: float, now: float
    ) -> RateLimitDecision:
        with self.lock:
            elapsed = now - self.last_refill
            if elapsed > 0:
                self.tokens = min(capacity, self.tokens + elapsed * refill_per_second)
                self.last_refill = now

            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return RateLimitDecision(
                    allowed=True,
                    remaining_tokens=int(self.tokens),
                    retry_after_seconds=None,
                )

            wait = (1.0 - self.tokens) / refill_per_second
            return RateLimitDecision(
                allowed=False,
                remaining_tokens=0,
                retry_after_seconds=max(1, math.ceil(wait)),
            )


class RateLimiter:
    """Client-keyed rate limiter using token buckets."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._buckets: dict[str, _TokenBucket] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def check(self, client_key: str) -> RateLimitDecision:
        """Consume one token for ``client_key`` if one is available."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(client_key)
            if bucket is None:
                bucket = _TokenBucket(float(self._config.capacity), now)
                self._buckets[client_key] = bucket
            sweep_due = now - self._last_sweep >= self._config.sweep_interval_seconds
            if sweep_due:
                self._last_sweep = now

        decision = bucket.try_consume(
            capacity=float(self._config.capacity),
            refill_per_second=self._config.refill_per_second,
            now=now,
        )
        if not decision.allowed:
            RATE_LIMIT_REJECTIONS.inc()
        if sweep_due:
            self.sweep(now=now)
        return decision

    def allow(self, client_key: str) -> bool:
        return self.check(client_key).allowed

    def enforce(self, client_key: str) -> RateLimitDecision:
        """Like :meth:`check`, but raises when the request is denied.

        Raises:
            RateLimitedError: If the client's bucket is empty.
        """
        decision = self.check(client_key)
        if not decision.allowed:
            raise RateLimitedError(
                client_key, retry_after=decision.retry_after_seconds or 1
            )
        return decision

    def sweep(self, *, now: float | None = None) -> int:
        """Evict buckets idle for longer than the staleness window."""
        if now is None:
            now = self._clock()
        cutoff = now - self._config.stale_after_seconds
        with self._lock:
            stale = [
                key
                for key, bucket in self._buckets.items()
                if bucket.last_refill < cutoff
            ]
            for key in stale:
                del self._buckets[key]
        if stale:
            RATE_LIMIT_BUCKETS.inc(len(stale))
        return len(stale)

    def reset(self) -> None:
        """Reset all buckets (useful for testing)."""
        with self._lock:
            self._buckets.clear()
