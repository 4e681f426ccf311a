"""
Token bucket rate limiter for HubSpot API calls.

HubSpot enforces limits per rolling interval (100 requests / 10 seconds for
OAuth apps), so the bucket is sized in requests per interval rather than
per minute.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class RateLimiterStats:
    requests_made: int = 0
    requests_throttled: int = 0
    total_wait_time: float = 0.0


class TokenBucketRateLimiter:
    """
    Thread-safe token bucket.

    The bucket starts full with `capacity` tokens and refills continuously
    at `requests_per_interval / interval_seconds` tokens per second. Each
    request consumes one token; callers block until one is available.

    Example:
        limiter = TokenBucketRateLimiter(requests_per_interval=100, interval_seconds=10)

        with limiter:
            client.post(...)
    """

    def __init__(
        self,
        requests_per_interval: int = 100,
        interval_seconds: float = 10.0,
        capacity: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_interval <= 0 or interval_seconds <= 0:
            raise ValueError("requests_per_interval and interval_seconds must be positive")

        self.rate = requests_per_interval / interval_seconds
        self.capacity = capacity or requests_per_interval

        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self.capacity)
        self._last_refill = clock()
        self._lock = threading.Lock()

        self.stats = RateLimiterStats()

    def _refill(self) -> None:
        """Must hold lock."""
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._last_refill) * self.rate)
        self._last_refill = now

    def acquire(self) -> None:
        """Take one token, sleeping until the bucket has one."""
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    self.stats.requests_made += 1
                    return
                wait_time = (1.0 - self._tokens) / self.rate

            self.stats.requests_throttled += 1
            self.stats.total_wait_time += wait_time
            self._sleep(wait_time)

    def __enter__(self) -> "TokenBucketRateLimiter":
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        pass

    def get_stats(self) -> dict:
        return {
            "requests_made": self.stats.requests_made,
            "requests_throttled": self.stats.requests_throttled,
            "total_wait_time_seconds": round(self.stats.total_wait_time, 2),
            "rate_per_second": round(self.rate, 2),
        }
