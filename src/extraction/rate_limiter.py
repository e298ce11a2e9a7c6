"""
Sliding-window rate limiter shared by every extraction session in the process.

The delay before a request grows with the number of requests in the last
`window_size` seconds:

    < medium_threshold  -> base_delay + random(0, random_delay)
    < high_threshold    -> medium_delay + random(0, random_delay)
    otherwise           -> high_delay + random(0, random_delay)

A 429 response calls backoff(), which sleeps `backoff_delay` on top of the normal delay.
"""

import asyncio
import logging
import random
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    def __init__(
        self,
        window_size: float = 60.0,
        base_delay: float = 1.0,
        random_delay: float = 1.0,
        medium_threshold: int = 5,
        high_threshold: int = 10,
        medium_delay: float = 2.0,
        high_delay: float = 3.0,
        backoff_delay: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.window_size = window_size
        self.base_delay = base_delay
        self.random_delay = random_delay
        self.medium_threshold = medium_threshold
        self.high_threshold = high_threshold
        self.medium_delay = medium_delay
        self.high_delay = high_delay
        self.backoff_delay = backoff_delay
        self.clock = clock
        self.sleep = sleep
        self.timestamps: Deque[float] = deque()
        self.total_requests = 0
        self.backoffs = 0
        self._lock: Optional[asyncio.Lock] = None

    @classmethod
    def from_timing(cls, timing: Dict[str, float], **kwargs) -> "SlidingWindowRateLimiter":
        return cls(
            window_size=timing.get("windowSize", 60.0),
            base_delay=timing.get("baseDelay", 1.0),
            random_delay=timing.get("randomDelay", 1.0),
            medium_threshold=int(timing.get("mediumThreshold", 5)),
            high_threshold=int(timing.get("highThreshold", 10)),
            medium_delay=timing.get("mediumDelay", 2.0),
            high_delay=timing.get("highDelay", 3.0),
            backoff_delay=timing.get("backoffDelay", 5.0),
            **kwargs,
        )

    @property
    def lock(self) -> asyncio.Lock:
        # Created lazily so the limiter can be built outside a running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _prune(self, now: float) -> None:
        while self.timestamps and now - self.timestamps[0] > self.window_size:
            self.timestamps.popleft()

    @property
    def recent_requests(self) -> int:
        self._prune(self.clock())
        return len(self.timestamps)

    def next_delay(self) -> float:
        count = self.recent_requests
        if count < self.medium_threshold:
            delay = self.base_delay
        elif count < self.high_threshold:
            delay = self.medium_delay
        else:
            delay = self.high_delay
        return delay + random.uniform(0, self.random_delay)

    async def acquire(self) -> float:
        """Wait for a slot and record the request. Returns the delay slept."""
        async with self.lock:
            delay = self.next_delay()
            if delay > 0:
                await self.sleep(delay)
            self.timestamps.append(self.clock())
            self.total_requests += 1
            return delay

    async def backoff(self) -> None:
        self.backoffs += 1
        logger.warning(f"⏳ [Rate Limiter] Rate limited, backing off {self.backoff_delay}s")
        await self.sleep(self.backoff_delay)

    def stats(self) -> Dict[str, float]:
        return {
            "recentRequests": self.recent_requests,
            "totalRequests": self.total_requests,
            "backoffs": self.backoffs,
            "windowSize": self.window_size,
        }
