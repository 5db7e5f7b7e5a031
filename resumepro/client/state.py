"""
ResumeCustomizer Pro - Client Auth State

The single mutable state object owned by ClientAuthGuard. Nothing else
in the client keeps auth flags; only a handful of fields are mirrored to
persistent storage (see storage.py).
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, Optional


EVENT_LOG_SIZE = 50


class AuthStatus(str, Enum):
    """Circuit breaker position."""
    CLOSED = "closed"   # auth calls and redirects allowed
    OPEN = "open"       # auth calls and redirects suppressed until cooldown ends


class AuthEventKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    ERROR = "error"
    RETRY = "retry"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class AuthEvent:
    kind: AuthEventKind
    at: float


@dataclass
class ClientAuthState:
    """
    Per-client-session auth state.

    Attributes:
        status: Breaker position
        user: Cached current user, or None when unauthenticated
        events: Bounded rolling log of auth errors, retries and redirects
        circuit_open_until: Clock time the current cooldown ends (0 when closed)
        consecutive_trips: Trips since the last quiet period, drives the cooldown
        last_trip_at: Clock time of the most recent trip
        redirect_attempts: Login redirects since the last successful auth
        in_flight: A "who am I" request is outstanding
    """
    status: AuthStatus = AuthStatus.CLOSED
    user: Optional[Dict[str, Any]] = None
    events: Deque[AuthEvent] = field(default_factory=lambda: deque(maxlen=EVENT_LOG_SIZE))
    circuit_open_until: float = 0.0
    consecutive_trips: int = 0
    last_trip_at: Optional[float] = None
    redirect_attempts: int = 0
    in_flight: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def count(self, *kinds: AuthEventKind) -> int:
        return sum(1 for event in self.events if event.kind in kinds)

    def prune(self, now: float, window_seconds: float) -> None:
        """Drop events older than the rolling window."""
        cutoff = now - window_seconds
        while self.events and self.events[0].at < cutoff:
            self.events.popleft()
