# wabot/services/rate_limiter.py
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, Tuple

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window guard keyed by (user, command)."""

    def __init__(self, window_sec: float = 10.0, max_calls: int = 3,
                 clock: Callable[[], float] = time.monotonic, max_keys: int = 10000):
        self.window_sec = float(window_sec)
        self.max_calls = int(max_calls)
        self._clock = clock
        self._max_keys = max_keys
        self._hits: Dict[Tuple[str, str], Deque[float]] = {}
        self.denied = 0

    def _prune(self, hits: Deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window_sec:
            hits.popleft()

    def check(self, user_id: str, command: str) -> bool:
        """Record an attempt and return whether it is admitted."""
        now = self._clock()
        key = (user_id, command.lower())
        hits = self._hits.get(key)
        if hits is None:
            if len(self._hits) >= self._max_keys:
                self.cleanup()
            hits = self._hits[key] = deque()
        self._prune(hits, now)
        if len(hits) >= self.max_calls:
            self.denied += 1
            logger.debug(f"Rate limited {user_id} on {command}")
            return False
        hits.append(now)
        return True

    def cleanup(self) -> int:
        """Forget keys whose window is empty."""
        now = self._clock()
        stale = []
        for key, hits in self._hits.items():
            self._prune(hits, now)
            if not hits:
                stale.append(key)
        for key in stale:
            del self._hits[key]
        return len(stale)

    def reset(self, user_id: str) -> None:
        for key in [k for k in self._hits if k[0] == user_id]:
            del self._hits[key]
