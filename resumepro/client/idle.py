"""
ResumeCustomizer Pro - Idle Watchdog

Forces a logout after IDLE_TIMEOUT_SECONDS without user activity,
regardless of the breaker position. The last activity time is shared
across tabs so activity in one keeps the others alive.
"""

import time
from typing import Callable, Optional

from resumepro.client.storage import LAST_ACTIVE_KEY, KeyValueStorage, get_float
from resumepro.logging import get_logger

logger = get_logger(__name__)

IDLE_TIMEOUT_SECONDS = 60 * 60

# UI events that count as activity
ACTIVITY_EVENTS = ("mousedown", "keydown", "scroll", "touchstart", "click")


class IdleWatchdog:
    def __init__(
        self,
        storage: KeyValueStorage,
        on_idle: Callable[[], None],
        clock: Callable[[], float] = time.time,
        timeout_seconds: float = IDLE_TIMEOUT_SECONDS,
    ):
        self.storage = storage
        self.on_idle = on_idle
        self.clock = clock
        self.timeout_seconds = timeout_seconds
        self._fired = False

    def record_activity(self, event: Optional[str] = None) -> None:
        if event is not None and event not in ACTIVITY_EVENTS:
            return
        self.storage.set(LAST_ACTIVE_KEY, str(self.clock()))
        self._fired = False

    def idle_seconds(self) -> float:
        last = get_float(self.storage, LAST_ACTIVE_KEY)
        if last is None:
            return 0.0
        return max(self.clock() - last, 0.0)

    def check(self) -> bool:
        """
        Run on a timer. Returns True when the idle logout fired on this call.

        With no recorded activity the watchdog starts counting from now.
        """
        if self.storage.get(LAST_ACTIVE_KEY) is None:
            self.record_activity()
            return False
        if self._fired or self.idle_seconds() < self.timeout_seconds:
            return False

        self._fired = True
        logger.info("idle_logout", idle_seconds=round(self.idle_seconds()))
        self.on_idle()
        return True
