from __future__ import annotations

import threading
import time
from typing import Callable


class TokenBucket:
    """
    Token bucket refilled proportionally to elapsed time.
    Callers that find the bucket empty skip the call; nothing here blocks.
    """

    def __init__(
        self,
        capacity: int = 30,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0 or window_seconds <= 0:
            raise ValueError("capacity and window_seconds must be positive.")
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = threading.Lock()

    def try_acquire(self, tokens: float = 1.0) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    @property
    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            refill = (elapsed / self.window_seconds) * self.capacity
            self._tokens = min(float(self.capacity), self._tokens + refill)
            self._last_refill = now
