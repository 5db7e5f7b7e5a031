"""
ResumeCustomizer Pro - Client Auth Guard Tests

Tests for the client-side resilience layer:
- Circuit breaker trips, cooldown growth and reset
- Redirect backoff and post-login landing resolution
- Idle logout and cross-tab logout broadcast
- AuthClient behaviour against a mocked API

Run with: pytest tests/test_client_guard.py
"""

import httpx
import pytest

from resumepro.client import (
    ApiError,
    AuthClient,
    AuthEventKind,
    AuthStatus,
    BroadcastHub,
    ClientAuthGuard,
    IdleWatchdog,
    LogoutBroadcaster,
    MemoryStorage,
    NetworkError,
    resolve_post_login_path,
    should_redirect,
)
from resumepro.client.guard import (
    DEFAULT_LANDING_PATH,
    MAX_ERRORS,
    cooldown_seconds,
    redirect_backoff,
)
from resumepro.client.idle import IDLE_TIMEOUT_SECONDS
from resumepro.client.state import EVENT_LOG_SIZE
from resumepro.client.storage import (
    LAST_ACTIVE_KEY,
    LAST_REDIRECT_KEY,
    LOGIN_AT_KEY,
    REDIRECT_AFTER_LOGIN_KEY,
    REDIRECT_ATTEMPTS_KEY,
)


class FakeClock:
    def __init__(self, now: float = 10_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def guard(storage, clock):
    return ClientAuthGuard(storage=storage, clock=clock)


def _trip(guard):
    for _ in range(MAX_ERRORS):
        guard.record_error()


# =============================================================================
# CIRCUIT BREAKER TESTS
# =============================================================================

class TestCircuitBreaker:
    """Breaker transitions driven by the event log."""

    def test_starts_closed(self, guard):
        assert guard.status == AuthStatus.CLOSED
        assert guard.allow_request() is True

    def test_four_errors_keep_breaker_closed(self, guard):
        for _ in range(MAX_ERRORS - 1):
            guard.record_error()

        assert guard.is_open is False

    def test_five_errors_in_window_open_breaker(self, guard):
        guard.record_unauthorized()
        guard.record_retry()
        guard.record_error()
        guard.record_error()
        guard.record_unauthorized()

        assert guard.is_open is True
        assert guard.allow_request() is False

    def test_errors_outside_window_do_not_count(self, guard, clock):
        for _ in range(MAX_ERRORS - 1):
            guard.record_error()
        clock.advance(11)
        guard.record_error()

        assert guard.is_open is False
        assert guard.state.count(AuthEventKind.ERROR) == 1

    def test_three_redirects_open_breaker(self, guard):
        for _ in range(3):
            guard.record_redirect()

        assert guard.is_open is True

    def test_breaker_closes_after_cooldown(self, guard, clock):
        _trip(guard)

        clock.advance(29)
        assert guard.is_open is True

        clock.advance(1)
        assert guard.is_open is False
        assert len(guard.state.events) == 0

    def test_cooldown_doubles_and_caps(self, guard, clock):
        """30, 60, 120, 240, then capped at 300 seconds."""
        expected = [30, 60, 120, 240, 300, 300]
        for cooldown in expected:
            _trip(guard)
            assert guard.state.circuit_open_until == clock.now + cooldown
            clock.advance(cooldown)
            assert guard.is_open is False

    def test_quiet_period_resets_cooldown(self, guard, clock):
        _trip(guard)
        clock.advance(30)
        _trip(guard)
        assert guard.state.consecutive_trips == 2

        clock.advance(601)
        _trip(guard)

        assert guard.state.consecutive_trips == 1
        assert guard.state.circuit_open_until == clock.now + 30

    def test_success_resets_everything(self, guard, clock, storage):
        _trip(guard)
        storage.set(REDIRECT_ATTEMPTS_KEY, "2")
        storage.set(LAST_REDIRECT_KEY, str(clock.now))

        guard.record_success({"id": "u1"})

        assert guard.is_open is False
        assert guard.state.consecutive_trips == 0
        assert guard.state.user == {"id": "u1"}
        assert storage.get(REDIRECT_ATTEMPTS_KEY) is None
        assert storage.get(LAST_REDIRECT_KEY) is None

    def test_unauthorized_clears_cached_user(self, guard):
        guard.record_success({"id": "u1"})

        guard.record_unauthorized()

        assert guard.state.user is None
        assert guard.state.is_authenticated is False

    def test_event_log_is_bounded(self, guard):
        for _ in range(200):
            guard.record_error()

        assert len(guard.state.events) == EVENT_LOG_SIZE

    @pytest.mark.parametrize("trips,expected", [(0, 30), (1, 30), (2, 60), (3, 120), (5, 300), (10, 300)])
    def test_cooldown_seconds(self, trips, expected):
        assert cooldown_seconds(trips) == expected


# =============================================================================
# REDIRECT TESTS
# =============================================================================

class TestRedirects:
    """Redirect decisions and their persistence."""

    @pytest.mark.parametrize("attempts,expected", [(0, 0), (1, 2), (2, 4), (4, 16), (5, 30), (9, 30)])
    def test_redirect_backoff(self, attempts, expected):
        assert redirect_backoff(attempts) == expected

    def test_should_redirect_when_clear(self):
        decision = should_redirect(
            "/dashboard", now=100.0, circuit_open=False, last_redirect_at=None, attempts=0
        )

        assert decision.allowed is True

    def test_should_not_redirect_while_open(self):
        decision = should_redirect(
            "/dashboard", now=100.0, circuit_open=True, last_redirect_at=None, attempts=0
        )

        assert decision.allowed is False
        assert decision.reason == "circuit_open"

    @pytest.mark.parametrize("path", ["/login", "/register/", "/verify-email?token=x", "/reset-password#top"])
    def test_should_not_redirect_from_auth_pages(self, path):
        decision = should_redirect(path, now=100.0, circuit_open=False, last_redirect_at=None, attempts=0)

        assert decision.allowed is False
        assert decision.reason == "on_auth_page"

    def test_should_not_redirect_during_backoff(self):
        decision = should_redirect(
            "/dashboard", now=101.0, circuit_open=False, last_redirect_at=100.0, attempts=2
        )

        assert decision.allowed is False
        assert decision.reason == "backoff"
        assert decision.retry_in == pytest.approx(3.0)

    def test_request_login_redirect_persists_state(self, guard, storage, clock):
        decision = guard.request_login_redirect("/dashboard/resumes")

        assert decision.allowed is True
        assert storage.get(REDIRECT_ATTEMPTS_KEY) == "1"
        assert float(storage.get(LAST_REDIRECT_KEY)) == clock.now
        assert storage.get(REDIRECT_AFTER_LOGIN_KEY) == "/dashboard/resumes"

    def test_backoff_suppresses_rapid_redirects(self, guard, clock):
        assert guard.request_login_redirect("/dashboard").allowed is True

        clock.advance(1)
        assert guard.request_login_redirect("/dashboard").reason == "backoff"

        clock.advance(1)
        assert guard.request_login_redirect("/dashboard").allowed is True

    def test_redirect_loop_trips_breaker(self, guard, clock):
        """Three spaced redirects inside the window open the breaker."""
        guard.request_login_redirect("/dashboard")
        clock.advance(2)
        guard.request_login_redirect("/dashboard")
        clock.advance(4)
        guard.request_login_redirect("/dashboard")

        assert guard.is_open is True
        assert guard.request_login_redirect("/dashboard").reason == "circuit_open"

    def test_redirect_attempts_shared_across_tabs(self, storage, clock):
        first_tab = ClientAuthGuard(storage=storage, clock=clock)
        second_tab = ClientAuthGuard(storage=storage, clock=clock)

        first_tab.request_login_redirect("/dashboard")
        clock.advance(1)

        assert second_tab.request_login_redirect("/dashboard").reason == "backoff"


class TestPostLoginLanding:
    """Cached landing path resolution."""

    @pytest.mark.parametrize("cached,expected", [
        ("/", "/"),
        ("/privacy", "/privacy"),
        ("/privacy/", "/privacy"),
        ("/admin", DEFAULT_LANDING_PATH),
        ("https://evil.test/", DEFAULT_LANDING_PATH),
        (None, DEFAULT_LANDING_PATH),
    ])
    def test_resolve_post_login_path(self, cached, expected):
        assert resolve_post_login_path(cached) == expected

    def test_cached_path_honored_once(self, guard, storage):
        storage.set(REDIRECT_AFTER_LOGIN_KEY, "/privacy")

        assert guard.post_login_path() == "/privacy"
        assert guard.post_login_path() == DEFAULT_LANDING_PATH


# =============================================================================
# IDLE AND BROADCAST TESTS
# =============================================================================

class TestIdleWatchdog:
    """Forced logout after an hour without activity."""

    def test_first_check_starts_the_clock(self, storage, clock):
        fired = []
        watchdog = IdleWatchdog(storage, lambda: fired.append(True), clock=clock)

        assert watchdog.check() is False
        assert storage.get(LAST_ACTIVE_KEY) is not None

    def test_idle_logout_fires_once(self, storage, clock):
        fired = []
        watchdog = IdleWatchdog(storage, lambda: fired.append(True), clock=clock)
        watchdog.record_activity("click")

        clock.advance(IDLE_TIMEOUT_SECONDS - 1)
        assert watchdog.check() is False

        clock.advance(1)
        assert watchdog.check() is True
        assert watchdog.check() is False
        assert fired == [True]

    def test_activity_in_another_tab_keeps_alive(self, storage, clock):
        fired = []
        this_tab = IdleWatchdog(storage, lambda: fired.append(True), clock=clock)
        other_tab = IdleWatchdog(storage, lambda: None, clock=clock)
        this_tab.record_activity()

        clock.advance(IDLE_TIMEOUT_SECONDS - 10)
        other_tab.record_activity("keydown")
        clock.advance(20)

        assert this_tab.check() is False
        assert fired == []

    def test_non_activity_events_ignored(self, storage, clock):
        watchdog = IdleWatchdog(storage, lambda: None, clock=clock)
        watchdog.record_activity()
        before = storage.get(LAST_ACTIVE_KEY)
        clock.advance(5)

        watchdog.record_activity("mousemove")

        assert storage.get(LAST_ACTIVE_KEY) == before

    def test_idle_logout_ignores_breaker(self, storage, clock):
        guard = ClientAuthGuard(storage=storage, clock=clock)
        guard.mark_logged_in({"id": "u1"})
        watchdog = IdleWatchdog(storage, guard.logout, clock=clock)
        watchdog.record_activity()
        _trip(guard)

        clock.advance(IDLE_TIMEOUT_SECONDS)
        watchdog.check()

        assert guard.state.user is None
        assert storage.get(LOGIN_AT_KEY) is None


class TestLogoutBroadcast:
    """Cross-tab logout over a channel or the storage fallback."""

    def test_channel_logout_reaches_other_tabs(self, storage, clock):
        hub = BroadcastHub()
        tab_a = ClientAuthGuard(storage, clock, broadcaster=LogoutBroadcaster(storage, hub))
        logged_out = []
        tab_b = ClientAuthGuard(
            storage, clock,
            broadcaster=LogoutBroadcaster(storage, hub),
            on_logout=lambda: logged_out.append("b"),
        )
        tab_a.mark_logged_in({"id": "u1"})
        tab_b.mark_logged_in({"id": "u1"})

        tab_a.logout()

        assert tab_b.state.user is None
        assert logged_out == ["b"]

    def test_storage_fallback_reaches_other_tabs(self, storage, clock):
        calls = []
        tab_a = ClientAuthGuard(
            storage, clock,
            broadcaster=LogoutBroadcaster(storage),
            on_logout=lambda: calls.append("a"),
        )
        ClientAuthGuard(
            storage, clock,
            broadcaster=LogoutBroadcaster(storage),
            on_logout=lambda: calls.append("b"),
        )

        tab_a.logout()

        assert sorted(calls) == ["a", "b"]

    def test_sender_not_echoed(self):
        hub = BroadcastHub()
        received = []
        sender = object()
        hub.subscribe("rcp-auth", sender, received.append)

        assert hub.post("rcp-auth", sender, {"type": "logout"}) == 0
        assert received == []

    def test_failing_logout_callback_does_not_raise(self, storage, clock):
        def boom():
            raise RuntimeError("ui gone")

        guard = ClientAuthGuard(storage, clock, on_logout=boom)

        guard.logout()

        assert guard.state.user is None


# =============================================================================
# AUTH CLIENT TESTS
# =============================================================================

class TestAuthClient:
    """AuthClient wired through the guard against httpx.MockTransport."""

    async def test_fetch_current_user_success(self, guard):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"id": "u1"}))

        async with AuthClient("http://testserver", guard, transport=transport) as client:
            user = await client.fetch_current_user()

        assert user == {"id": "u1"}
        assert guard.state.user == {"id": "u1"}
        assert guard.state.in_flight is False

    async def test_unauthorized_answers_none_and_counts(self, guard):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"success": False}))

        async with AuthClient("http://testserver", guard, transport=transport) as client:
            assert await client.fetch_current_user() is None

        assert guard.state.count(AuthEventKind.UNAUTHORIZED) == 1

    async def test_open_breaker_short_circuits(self, guard):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(401)

        async with AuthClient("http://testserver", guard, transport=httpx.MockTransport(handler)) as client:
            for _ in range(MAX_ERRORS + 3):
                assert await client.fetch_current_user() is None

        assert len(calls) == MAX_ERRORS
        assert guard.is_open is True

    async def test_network_error_not_counted(self, guard):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        async with AuthClient("http://testserver", guard, transport=httpx.MockTransport(handler)) as client:
            guard.record_success({"id": "u1"})
            with pytest.raises(NetworkError):
                await client.fetch_current_user()

        assert len(guard.state.events) == 0
        assert guard.state.user == {"id": "u1"}
        assert guard.state.in_flight is False

    async def test_server_error_counted(self, guard):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"message": "boom"}))

        async with AuthClient("http://testserver", guard, transport=transport) as client:
            with pytest.raises(ApiError):
                await client.fetch_current_user()

        assert guard.state.count(AuthEventKind.ERROR) == 1

    async def test_login_marks_logged_in(self, guard, storage):
        body = {"success": True, "user": {"id": "u1"}, "accessToken": "a", "refreshToken": "r"}
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))

        async with AuthClient("http://testserver", guard, transport=transport) as client:
            await client.login("user@test.com", "pw")
            assert client.refresh_token == "r"

        assert guard.state.user == {"id": "u1"}
        assert storage.get(LOGIN_AT_KEY) is not None

    async def test_two_factor_login_waits_for_code(self, guard):
        body = {"success": True, "requires2FA": True, "tempToken": "t"}
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))

        async with AuthClient("http://testserver", guard, transport=transport) as client:
            result = await client.login("user@test.com", "pw")

        assert result["requires2FA"] is True
        assert guard.state.user is None

    async def test_csrf_header_sent_on_post(self, guard):
        seen = {}

        def handler(request):
            if request.url.path == "/api/auth/csrf":
                return httpx.Response(
                    200,
                    json={"csrfToken": "tok"},
                    headers={"set-cookie": "csrf_token=tok; Path=/"},
                )
            seen["csrf"] = request.headers.get("X-CSRF-Token")
            return httpx.Response(200, json={"success": True})

        async with AuthClient("http://testserver", guard, transport=httpx.MockTransport(handler)) as client:
            assert await client.fetch_csrf_token() == "tok"
            await client.logout()

        assert seen["csrf"] == "tok"

    async def test_logout_is_local_even_when_offline(self, storage, clock):
        hub = BroadcastHub()
        guard = ClientAuthGuard(storage, clock, broadcaster=LogoutBroadcaster(storage, hub))
        other_tab = ClientAuthGuard(storage, clock, broadcaster=LogoutBroadcaster(storage, hub))
        other_tab.mark_logged_in({"id": "u1"})

        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        async with AuthClient("http://testserver", guard, transport=httpx.MockTransport(handler)) as client:
            client.refresh_token = "r"
            await client.logout()
            assert client.refresh_token is None

        assert storage.get(LOGIN_AT_KEY) is None
        assert other_tab.state.user is None
