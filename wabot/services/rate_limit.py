"""Per-identity minimum interval between processed messages.

State lives in process memory and resets on restart, which briefly allows a burst
right after a deploy.
"""

import threading

PURGE_THRESHOLD = 5000


class RateLimiter:
    def __init__(self, min_interval_ms: int):
        self.min_interval_ms = max(int(min_interval_ms or 0), 0)
        self._last_accepted: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.min_interval_ms > 0

    def _purge(self, now: int) -> None:
        if len(self._last_accepted) < PURGE_THRESHOLD:
            return
        expired = [key for key, at in self._last_accepted.items() if now - at >= self.min_interval_ms]
        for key in expired:
            self._last_accepted.pop(key, None)

    def allow(self, identity: str, now: int) -> bool:
        """True if `identity` may be processed now. Rejected calls do not move the clock."""
        if not self.enabled:
            return True
        with self._lock:
            self._purge(now)
            last = self._last_accepted.get(identity)
            if last is not None and now - last < self.min_interval_ms:
                return False
            self._last_accepted[identity] = now
            return True
