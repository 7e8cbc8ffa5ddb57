from __future__ import annotations

import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class FixedWindowRateLimiter:
    """Fixed-window request counter keyed by an arbitrary string.

    Each key gets ``max_requests`` hits per window; the window starts on the
    first hit after the previous one expired. State lives in memory only, so a
    restart resets every counter.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
        max_keys: int = 10_000,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._max_keys = max_keys
        self._lock = Lock()
        self._state: dict[str, dict[str, float | int]] = {}

    def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            state = self._state.get(key)
            if state is None or now > float(state["reset_at"]):
                if state is None and len(self._state) >= self._max_keys:
                    self._prune(now)
                self._state[key] = {"count": 1, "reset_at": now + self.window_seconds}
                return RateLimitDecision(allowed=True, remaining=self.max_requests - 1)

            count = int(state["count"])
            if count < self.max_requests:
                state["count"] = count + 1
                return RateLimitDecision(allowed=True, remaining=self.max_requests - count - 1)

            retry_after = max(1, math.ceil(float(state["reset_at"]) - now))
        return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)

    def reset(self) -> None:
        with self._lock:
            self._state.clear()

    def _prune(self, now: float) -> None:
        expired = [key for key, state in self._state.items() if now > float(state["reset_at"])]
        for key in expired:
            del self._state[key]
