"""Periodic HUMAN -> BOT auto-timeout sweep.

The inline check in touch_user only fires when the user writes again; the sweep
catches users who went quiet during a handoff.
"""

import threading
from typing import Optional

from wabot.logging_config import get_logger
from wabot.services.conversation_store import ConversationStore
from wabot.services.errors import StoreUnavailable
from wabot.services.timeutils import Clock, now_ms

logger = get_logger("timeout_sweeper")


class TimeoutSweeper:
    def __init__(self, store: ConversationStore, idle_timeout_ms: int, clock: Clock = now_ms):
        self.store = store
        self.idle_timeout_ms = idle_timeout_ms
        self._clock = clock
        self._running = threading.Lock()

    def run_once(self) -> Optional[int]:
        """Run one sweep. Returns the number of users switched, or None if skipped or failed."""
        if not self._running.acquire(blocking=False):
            logger.info("Sweep already running, skipped")
            return None
        try:
            cutoff = self._clock() - self.idle_timeout_ms
            switched = self.store.sweep_timeouts(cutoff)
            if switched:
                logger.info("AUTO_TIMEOUT sweep switched users to BOT", extra={"context": {"count": switched}})
            return switched
        except StoreUnavailable as exc:
            logger.error("AUTO_TIMEOUT sweep failed", extra={"context": {"error": str(exc)}})
            return None
        finally:
            self._running.release()
