"""Per-client quotas (token bucket)."""

from __future__ import annotations

import time
from typing import Callable


class TokenBucket:
    def __init__(self, rate_per_sec: float, burst: float, clock: Callable[[], float] = time.perf_counter):
        self.rate = float(rate_per_sec)
        self.capacity = float(burst)
        self.tokens = float(burst)
        self.clock = clock
        self.last = clock()

    def allow(self, cost: float = 1.0) -> bool:
        now = self.clock()
        dt = now - self.last
        self.last = now
        self.tokens = min(self.capacity, self.tokens + dt * self.rate)
        if self.tokens >= cost:
            self.tokens -= cost
            return True
        return False


class ClientQuotas:
    """One bucket per client identity; idle buckets are pruned."""

    def __init__(self, rate_per_sec: float, burst: float, clock: Callable[[], float] = time.perf_counter):
        self.rate = rate_per_sec
        self.burst = burst
        self.clock = clock
        self._buckets: dict[str, TokenBucket] = {}

    def allow(self, client: str, cost: float = 1.0) -> bool:
        b = self._buckets.get(client)
        if b is None:
            b = TokenBucket(self.rate, self.burst, clock=self.clock)
            self._buckets[client] = b
        return b.allow(cost)

    def prune(self, idle_sec: float) -> int:
        now = self.clock()
        idle = [k for k, b in self._buckets.items() if now - b.last > idle_sec]
        for k in idle:
            del self._buckets[k]
        return len(idle)

    def __len__(self) -> int:
        return len(self._buckets)
