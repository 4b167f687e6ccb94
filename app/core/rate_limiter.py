"""
Token bucket for upstreams with a published request rate.
Callers await `acquire()` before each request; the bucket refills continuously at
`rate` tokens per second up to `capacity`.
"""
import asyncio
import time
from typing import Awaitable, Callable


class TokenBucket:
    def __init__(
        self,
        rate: float,
        capacity: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated_at
        self._updated_at = now
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)

    async def acquire(self, tokens: float = 1.0) -> float:
        """Wait until `tokens` are available and take them. Returns seconds waited."""
        if tokens > self.capacity:
            raise ValueError("cannot acquire more tokens than the bucket holds")
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= tokens:
                    self._tokens -= tokens
                    return waited
                deficit = (tokens - self._tokens) / self.rate
                await self._sleep(deficit)
                waited += deficit
