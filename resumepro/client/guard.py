"""
ResumeCustomizer Pro - Client Auth Guard

Circuit breaker and redirect controller that keeps a client from looping
between "who am I" requests and login redirects when auth state and
navigation disagree.

Breaker:
- Unauthorized responses, errors, retries and redirects are logged with
  their time; events older than WINDOW_SECONDS are pruned
- The breaker opens at MAX_ERRORS errors or MAX_REDIRECTS redirects in
  the window and stays open for an exponentially growing cooldown
- While open, auth calls and redirects are suppressed and callers see
  "unauthenticated" without a round trip

Redirects:
- should_redirect() and resolve_post_login_path() are pure functions
- The last redirect time and attempt count are shared across tabs
  through storage
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from resumepro.client.broadcast import LogoutBroadcaster
from resumepro.client.state import AuthEvent, AuthEventKind, AuthStatus, ClientAuthState
from resumepro.client.storage import (
    LAST_REDIRECT_KEY,
    LOGIN_AT_KEY,
    REDIRECT_AFTER_LOGIN_KEY,
    REDIRECT_ATTEMPTS_KEY,
    KeyValueStorage,
    MemoryStorage,
    clear_client_auth,
    get_float,
)
from resumepro.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Tuning
# =============================================================================

WINDOW_SECONDS = 10.0
MAX_ERRORS = 5
MAX_REDIRECTS = 3

BASE_COOLDOWN_SECONDS = 30.0
MAX_COOLDOWN_SECONDS = 300.0
# A trip this long after the previous one starts a fresh cooldown series
QUIET_PERIOD_SECONDS = 600.0

REDIRECT_BASE_BACKOFF_SECONDS = 1.0
REDIRECT_MAX_BACKOFF_SECONDS = 30.0

LOGIN_PATH = "/login"
DEFAULT_LANDING_PATH = "/dashboard"
POST_LOGIN_ALLOW_LIST = frozenset({"/", "/privacy"})
PUBLIC_AUTH_PATHS = frozenset({
    LOGIN_PATH,
    "/register",
    "/verify-email",
    "/forgot-password",
    "/reset-password",
})

_ERROR_KINDS = (AuthEventKind.UNAUTHORIZED, AuthEventKind.ERROR, AuthEventKind.RETRY)


# =============================================================================
# Pure decisions
# =============================================================================

@dataclass(frozen=True)
class RedirectDecision:
    allowed: bool
    reason: str
    retry_in: float = 0.0


def _normalize_path(path: Optional[str]) -> str:
    path = (path or "/").split("?", 1)[0].split("#", 1)[0]
    if len(path) > 1:
        path = path.rstrip("/")
    return path or "/"


def is_public_auth_page(path: Optional[str]) -> bool:
    return _normalize_path(path) in PUBLIC_AUTH_PATHS


def cooldown_seconds(consecutive_trips: int) -> float:
    """30 s, 60 s, 120 s, ... capped at 5 minutes."""
    exponent = max(consecutive_trips - 1, 0)
    return min(BASE_COOLDOWN_SECONDS * (2 ** exponent), MAX_COOLDOWN_SECONDS)


def redirect_backoff(attempts: int) -> float:
    """Minimum spacing between login redirects after `attempts` redirects."""
    if attempts <= 0:
        return 0.0
    return min(REDIRECT_BASE_BACKOFF_SECONDS * (2 ** attempts), REDIRECT_MAX_BACKOFF_SECONDS)


def should_redirect(
    current_path: str,
    *,
    now: float,
    circuit_open: bool,
    last_redirect_at: Optional[float],
    attempts: int,
) -> RedirectDecision:
    """Decide whether a login redirect may happen now."""
    if circuit_open:
        return RedirectDecision(False, "circuit_open")
    if is_public_auth_page(current_path):
        return RedirectDecision(False, "on_auth_page")
    if last_redirect_at is not None:
        wait = redirect_backoff(attempts) - (now - last_redirect_at)
        if wait > 0:
            return RedirectDecision(False, "backoff", retry_in=wait)
    return RedirectDecision(True, "allowed")


def resolve_post_login_path(cached_path: Optional[str]) -> str:
    """Landing page after login: the cached path only if allow-listed."""
    if cached_path is not None and _normalize_path(cached_path) in POST_LOGIN_ALLOW_LIST:
        return _normalize_path(cached_path)
    return DEFAULT_LANDING_PATH


# =============================================================================
# Guard
# =============================================================================

class ClientAuthGuard:
    """
    Owns ClientAuthState and applies the breaker and redirect rules.

    Usage:
        guard = ClientAuthGuard(storage=MemoryStorage(), clock=fake_clock)
        if guard.allow_request():
            ...
        guard.record_unauthorized()
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        clock: Callable[[], float] = time.time,
        broadcaster: Optional[LogoutBroadcaster] = None,
        on_logout: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            storage: Persistent storage shared across tabs
            clock: Time source in seconds (injectable for tests)
            broadcaster: Cross-tab logout transport
            on_logout: Called after any logout, local or from another tab
        """
        self.storage = storage if storage is not None else MemoryStorage()
        self.clock = clock
        self.state = ClientAuthState()
        self.broadcaster = broadcaster
        self._on_logout = on_logout
        if broadcaster is not None:
            broadcaster.on_logout(lambda: self.logout(broadcast=False))

    # -------------------------------------------------------------------------
    # Breaker
    # -------------------------------------------------------------------------

    @property
    def status(self) -> AuthStatus:
        self._close_if_cooled_down()
        return self.state.status

    @property
    def is_open(self) -> bool:
        return self.status == AuthStatus.OPEN

    def allow_request(self) -> bool:
        """True when a network auth call may be made."""
        return not self.is_open

    def record_unauthorized(self) -> None:
        self.state.user = None
        self._record(AuthEventKind.UNAUTHORIZED)

    def record_error(self) -> None:
        self._record(AuthEventKind.ERROR)

    def record_retry(self) -> None:
        self._record(AuthEventKind.RETRY)

    def record_redirect(self) -> None:
        self._record(AuthEventKind.REDIRECT)

    def record_success(self, user: Optional[Dict[str, Any]] = None) -> None:
        """Authenticated: reset every counter, log and redirect attempt."""
        state = self.state
        state.user = user
        state.events.clear()
        state.status = AuthStatus.CLOSED
        state.circuit_open_until = 0.0
        state.consecutive_trips = 0
        state.redirect_attempts = 0
        self.storage.remove(REDIRECT_ATTEMPTS_KEY)
        self.storage.remove(LAST_REDIRECT_KEY)

    def _record(self, kind: AuthEventKind) -> None:
        now = self.clock()
        self._close_if_cooled_down()
        state = self.state
        state.events.append(AuthEvent(kind, now))
        state.prune(now, WINDOW_SECONDS)

        if state.status == AuthStatus.OPEN:
            return
        if state.count(*_ERROR_KINDS) >= MAX_ERRORS or state.count(AuthEventKind.REDIRECT) >= MAX_REDIRECTS:
            self._trip(now)

    def _trip(self, now: float) -> None:
        state = self.state
        if state.last_trip_at is not None and now - state.last_trip_at > QUIET_PERIOD_SECONDS:
            state.consecutive_trips = 0
        state.consecutive_trips += 1
        state.last_trip_at = now
        cooldown = cooldown_seconds(state.consecutive_trips)
        state.status = AuthStatus.OPEN
        state.circuit_open_until = now + cooldown
        logger.warning(
            "auth_circuit_opened",
            trips=state.consecutive_trips,
            cooldown_seconds=cooldown,
            errors=state.count(*_ERROR_KINDS),
            redirects=state.count(AuthEventKind.REDIRECT),
        )

    def _close_if_cooled_down(self) -> None:
        state = self.state
        if state.status == AuthStatus.OPEN and self.clock() >= state.circuit_open_until:
            state.status = AuthStatus.CLOSED
            state.circuit_open_until = 0.0
            state.events.clear()
            logger.info("auth_circuit_closed", trips=state.consecutive_trips)

    # -------------------------------------------------------------------------
    # Redirects
    # -------------------------------------------------------------------------

    def request_login_redirect(self, current_path: str) -> RedirectDecision:
        """
        Ask to send the user to the login page.

        An allowed redirect is recorded, its time and the attempt count are
        persisted, and `current_path` is cached for after login.
        """
        now = self.clock()
        attempts = self._redirect_attempts()
        decision = should_redirect(
            current_path,
            now=now,
            circuit_open=self.is_open,
            last_redirect_at=get_float(self.storage, LAST_REDIRECT_KEY),
            attempts=attempts,
        )
        if not decision.allowed:
            logger.debug("login_redirect_suppressed", reason=decision.reason)
            return decision

        self.state.redirect_attempts = attempts + 1
        self.storage.set(LAST_REDIRECT_KEY, str(now))
        self.storage.set(REDIRECT_ATTEMPTS_KEY, str(attempts + 1))
        self.storage.set(REDIRECT_AFTER_LOGIN_KEY, _normalize_path(current_path))
        self.record_redirect()
        return decision

    def post_login_path(self) -> str:
        """Resolve and clear the cached landing path (honored at most once)."""
        cached = self.storage.get(REDIRECT_AFTER_LOGIN_KEY)
        self.storage.remove(REDIRECT_AFTER_LOGIN_KEY)
        return resolve_post_login_path(cached)

    def _redirect_attempts(self) -> int:
        stored = get_float(self.storage, REDIRECT_ATTEMPTS_KEY)
        return max(self.state.redirect_attempts, int(stored or 0))

    # -------------------------------------------------------------------------
    # Login / logout
    # -------------------------------------------------------------------------

    def mark_logged_in(self, user: Dict[str, Any]) -> None:
        self.record_success(user)
        self.storage.set(LOGIN_AT_KEY, str(self.clock()))

    def logout(self, broadcast: bool = True) -> None:
        """Forget the user, clear persisted auth keys and tell other tabs."""
        self.state = ClientAuthState()
        clear_client_auth(self.storage)
        if broadcast and self.broadcaster is not None:
            self.broadcaster.announce()
        if self._on_logout is not None:
            try:
                self._on_logout()
            except Exception as e:
                logger.error("logout_callback_failed", error=str(e))
