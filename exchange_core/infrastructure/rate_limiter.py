"""
Request Throttle

Token Bucket rate limiter gating outbound REST calls:
- Refill is computed lazily at acquire time (no background timer)
- Burst allowed up to max_capacity
- Callers that cannot be served immediately are suspended (asyncio.sleep)
  and served in FIFO issue order
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class TokenBucketConfig:
    """Token bucket settings"""
    refill_rate: float  # tokens per millisecond
    capacity: float = 1.0  # tokens available at start
    default_cost: float = 1.0
    max_capacity: float = 1000.0

    def __post_init__(self):
        if self.refill_rate <= 0:
            raise ValueError(f"refill_rate must be > 0 (got {self.refill_rate})")
        if self.max_capacity <= 0:
            raise ValueError(f"max_capacity must be > 0 (got {self.max_capacity})")
        if not 0 <= self.capacity <= self.max_capacity:
            raise ValueError(
                f"capacity ({self.capacity}) must be within [0, max_capacity={self.max_capacity}]"
            )

    @classmethod
    def from_rate_limit(cls, rate_limit_ms: float, **overrides) -> "TokenBucketConfig":
        """
        Build a config from a venue `rateLimit` (milliseconds per request).

        Args:
            rate_limit_ms: minimum spacing between requests, in ms
            **overrides: capacity / default_cost / max_capacity

        Returns:
            TokenBucketConfig with refill_rate = 1 / rate_limit_ms
        """
        if rate_limit_ms is None or rate_limit_ms <= 0:
            raise ValueError(f"rate_limit must be > 0 ms (got {rate_limit_ms})")
        return cls(refill_rate=1.0 / rate_limit_ms, **overrides)


class AsyncTokenBucket:
    """
    Token Bucket throttle for a single client instance.

    Example:
        >>> bucket = AsyncTokenBucket(TokenBucketConfig.from_rate_limit(100))
        >>> await bucket.acquire()       # immediate (initial capacity)
        >>> await bucket.acquire()       # suspended ~100ms
    """

    def __init__(
        self,
        config: TokenBucketConfig,
        clock: Callable[[], float] = _monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            config: bucket settings
            clock: current time in milliseconds (monotonic)
            sleep: coroutine sleeping for the given number of seconds
        """
        self.config = config
        self.refill_rate = config.refill_rate
        self.max_capacity = config.max_capacity
        self.default_cost = config.default_cost
        self.tokens = float(config.capacity)
        self._clock = clock
        self._sleep = sleep
        self.last_refill = clock()
        self._queue = asyncio.Lock()  # FIFO: waiters are woken in acquisition order
        self._acquire_count = 0
        self._delayed_count = 0
        self._total_wait_ms = 0.0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.max_capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def _debit(self, cost: float) -> None:
        # float drift after a computed sleep may leave tokens a hair under cost
        self.tokens = max(0.0, self.tokens - cost)
        self._acquire_count += 1

    async def acquire(self, cost: Optional[float] = None) -> float:
        """
        Suspend until `cost` tokens are available, then debit them.

        Args:
            cost: tokens to consume (default: config.default_cost)

        Returns:
            time spent waiting, in milliseconds (0.0 if served immediately)

        Raises:
            ValueError: cost is negative or can never be satisfied
        """
        if cost is None:
            cost = self.default_cost
        if cost < 0:
            raise ValueError(f"cost must be >= 0 (got {cost})")
        if cost > self.max_capacity:
            raise ValueError(
                f"cost {cost} exceeds bucket max_capacity {self.max_capacity}"
            )

        async with self._queue:
            self._refill()
            if self.tokens >= cost:
                self._debit(cost)
                return 0.0

            wait_ms = (cost - self.tokens) / self.refill_rate
            logger.debug(
                f"[THROTTLE] Waiting {wait_ms:.1f}ms (tokens={self.tokens:.3f}, cost={cost})"
            )
            await self._sleep(wait_ms / 1000.0)
            self._refill()
            self._debit(cost)
            self._delayed_count += 1
            self._total_wait_ms += wait_ms
            return wait_ms

    def reset(self) -> None:
        """Refill the bucket to its initial capacity and clear counters"""
        self.tokens = float(self.config.capacity)
        self.last_refill = self._clock()
        self._acquire_count = 0
        self._delayed_count = 0
        self._total_wait_ms = 0.0

    def get_stats(self) -> Dict:
        self._refill()
        return {
            "tokens": self.tokens,
            "max_capacity": self.max_capacity,
            "refill_rate": self.refill_rate,
            "acquire_count": self._acquire_count,
            "delayed_count": self._delayed_count,
            "total_wait_ms": self._total_wait_ms,
        }
