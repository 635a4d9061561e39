"""Account-keyed limiter that only counts failed attempts."""

import threading
import time
from collections import defaultdict, deque


class FailureLimiter:
    """Sliding window of failures per key, kept in process memory.

    Successful attempts are never recorded, so a burst of legitimate logins
    cannot lock an account out; ``reset`` clears a key after a success.
    """

    def __init__(self, attempts: int, window_ms: int) -> None:
        self._failures: defaultdict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._attempts = attempts
        self._seconds = window_ms / 1000
        self._last_cleanup = time.monotonic()
        self._cleanup_interval = 60.0

    def _prune(self, key: str, now: float) -> deque[float]:
        hits = self._failures[key]
        while hits and hits[0] <= now - self._seconds:
            hits.popleft()
        return hits

    def _cleanup_old_keys(self, now: float) -> None:
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        for key in [k for k in self._failures if not self._prune(k, now)]:
            del self._failures[key]

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` may try again; 0 when not blocked."""
        now = time.monotonic()
        with self._lock:
            self._cleanup_old_keys(now)
            hits = self._prune(key, now)
            if len(hits) < self._attempts:
                return 0
            return max(1, int(self._seconds - (now - hits[0])))

    def record_failure(self, key: str) -> None:
        with self._lock:
            self._prune(key, time.monotonic()).append(time.monotonic())

    def reset(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._failures.clear()
