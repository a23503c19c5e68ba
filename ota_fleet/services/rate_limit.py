import threading
import time
from collections import deque


class RateLimiter:
    """Sliding-window budget of failures per key (client IP).

    ``blocked`` only reads the window; callers ``record_failure`` after a
    rejected attempt and ``reset`` once the key has authenticated.
    """

    def __init__(self, max_failures: int, window_seconds: int) -> None:
        self.max_failures = max_failures
        self.window_seconds = window_seconds
        self._lock = threading.Lock()
        self._failures: dict[str, deque[float]] = {}

    def _prune(self, key: str, now: float) -> deque[float]:
        bucket = self._failures.setdefault(key, deque())
        while bucket and bucket[0] <= now - self.window_seconds:
            bucket.popleft()
        return bucket

    def blocked(self, key: str, now: float | None = None) -> bool:
        now = now or time.time()
        with self._lock:
            return len(self._prune(key, now)) >= self.max_failures

    def record_failure(self, key: str, now: float | None = None) -> int:
        now = now or time.time()
        with self._lock:
            bucket = self._prune(key, now)
            bucket.append(now)
            return len(bucket)

    def reset(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)
