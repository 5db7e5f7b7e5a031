"""
ResumeCustomizer Pro - Auth Rate Limiting

In-process sliding-window limiter for credential endpoints. Keys combine
the submitted email (when there is one) with the client IP, so one
attacker cannot lock out a victim from elsewhere and one IP cannot spray
many accounts unnoticed.

Single-process only; a multi-worker deployment needs a shared store.
"""

import time
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from resumepro.config import settings


class AuthRateLimiter:
    """Sliding-window attempt counter."""

    def __init__(
        self,
        max_attempts: int = 10,
        window_seconds: int = 900,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            max_attempts: Attempts allowed per key within the window
            window_seconds: Window length in seconds
            clock: Time source (injectable for tests)
        """
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: Dict[str, List[float]] = {}
        self._lock = Lock()

    @classmethod
    def for_login(cls) -> "AuthRateLimiter":
        return cls(settings.LOGIN_RATE_LIMIT, settings.LOGIN_RATE_WINDOW_SECONDS)

    @classmethod
    def for_password_reset(cls) -> "AuthRateLimiter":
        return cls(settings.RESET_RATE_LIMIT, settings.RESET_RATE_WINDOW_SECONDS)

    def _prune(self, key: str, now: float) -> List[float]:
        cutoff = now - self.window_seconds
        attempts = [t for t in self._attempts.get(key, []) if t > cutoff]
        if attempts:
            self._attempts[key] = attempts
        else:
            self._attempts.pop(key, None)
        return attempts

    def hit(self, key: str) -> Tuple[bool, Optional[int]]:
        """
        Record an attempt if the key still has budget.

        Returns:
            Tuple of (is_allowed, retry_after_seconds)
        """
        with self._lock:
            now = self._clock()
            attempts = self._prune(key, now)
            if len(attempts) >= self.max_attempts:
                retry_after = int(attempts[0] + self.window_seconds - now) + 1
                return False, retry_after
            self._attempts.setdefault(key, []).append(now)
            return True, None

    def reset(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)


def rate_limit_key(ip_address: str, email: Optional[str] = None) -> str:
    return f"{(email or 'unknown').strip().lower()}:{ip_address}"
