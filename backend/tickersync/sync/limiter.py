from __future__ import annotations

from collections import deque

from tickersync.clock import Clock


class SlidingWindowLimiter:
    """Allows at most ``max_requests`` acquisitions in any ``window`` seconds."""

    def __init__(self, max_requests: int, clock: Clock, window: float = 60.0) -> None:
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._stamps: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._stamps and self._stamps[0] <= now - self.window:
            self._stamps.popleft()

    def try_acquire(self) -> bool:
        now = self._clock.time()
        self._prune(now)
        if len(self._stamps) < self.max_requests:
            self._stamps.append(now)
            return True
        return False

    @property
    def remaining(self) -> int:
        self._prune(self._clock.time())
        return self.max_requests - len(self._stamps)
