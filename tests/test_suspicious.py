"""
ResumeCustomizer Pro - Suspicious Login Detection Tests

Unit tests for evaluate_login and the detector's database path.

Run with: pytest tests/test_suspicious.py
"""

from datetime import datetime, timedelta
from uuid import uuid4

from resumepro.audit import login_log
from resumepro.audit.models import AuditEventType, AuditStatus, LoginAuditEntry
from resumepro.auth.devices import DeviceInfo, parse_user_agent
from resumepro.auth.suspicious import SuspiciousActivityDetector, evaluate_login
from resumepro.services.geolocation import GeoLocation

NOW = datetime(2024, 6, 1, 12, 0, 0)

CHROME_WINDOWS = DeviceInfo(browser="Chrome", os="Windows", device_type="desktop")
FIREFOX_LINUX = DeviceInfo(browser="Firefox", os="Linux", device_type="desktop")

BERLIN = GeoLocation(city="Berlin", region="Berlin", country="Germany", country_code="DE")
MUNICH = GeoLocation(city="Munich", region="Bavaria", country="Germany", country_code="DE")
PARIS = GeoLocation(city="Paris", region="Ile-de-France", country="France", country_code="FR")


def _entry(geo: GeoLocation, device: DeviceInfo, minutes_ago: int) -> LoginAuditEntry:
    return LoginAuditEntry(
        event_type=AuditEventType.LOGIN.value,
        status=AuditStatus.SUCCESS.value,
        city=geo.city,
        region=geo.region,
        country=geo.country,
        browser=device.browser,
        os=device.os,
        device_type=device.device_type,
        created_at=NOW - timedelta(minutes=minutes_ago),
        prev_hash="0" * 64,
        hash="0" * 64,
    )


# =============================================================================
# EVALUATION TESTS
# =============================================================================

class TestEvaluateLogin:
    """Pure scoring of a login against history."""

    def test_first_login_is_new_but_not_suspicious(self):
        analysis = evaluate_login([], BERLIN, CHROME_WINDOWS, now=NOW)

        assert analysis.is_suspicious is False
        assert analysis.is_new_location is True
        assert analysis.is_new_device is True
        assert analysis.reasons == []

    def test_known_location_and_device_is_clean(self):
        history = [_entry(BERLIN, CHROME_WINDOWS, 600)]

        analysis = evaluate_login(history, BERLIN, CHROME_WINDOWS, now=NOW)

        assert analysis.is_suspicious is False
        assert analysis.is_new_location is False
        assert analysis.is_new_device is False

    def test_new_country(self):
        history = [_entry(BERLIN, CHROME_WINDOWS, 600)]

        analysis = evaluate_login(history, PARIS, CHROME_WINDOWS, now=NOW)

        assert analysis.is_suspicious is True
        assert analysis.is_new_location is True
        assert "Login from new country: France" in analysis.reasons

    def test_new_city_in_known_country(self):
        history = [_entry(BERLIN, CHROME_WINDOWS, 600)]

        analysis = evaluate_login(history, MUNICH, CHROME_WINDOWS, now=NOW)

        assert analysis.is_new_location is True
        assert "Login from new location: Munich, Bavaria, Germany" in analysis.reasons

    def test_unknown_geo_skips_location_check(self):
        """A failed lookup never counts as a new location."""
        history = [_entry(BERLIN, CHROME_WINDOWS, 600)]

        analysis = evaluate_login(history, GeoLocation(), CHROME_WINDOWS, now=NOW)

        assert analysis.is_new_location is False
        assert analysis.is_suspicious is False

    def test_new_device(self):
        history = [_entry(BERLIN, CHROME_WINDOWS, 600)]

        analysis = evaluate_login(history, BERLIN, FIREFOX_LINUX, now=NOW)

        assert analysis.is_new_device is True
        assert analysis.reasons == ["Login from new device: Firefox on Linux"]

    def test_device_match_ignores_case(self):
        history = [_entry(BERLIN, DeviceInfo(browser="chrome", os="windows"), 600)]

        analysis = evaluate_login(history, BERLIN, CHROME_WINDOWS, now=NOW)

        assert analysis.is_new_device is False

    def test_impossible_travel(self):
        history = [_entry(PARIS, CHROME_WINDOWS, 30), _entry(BERLIN, CHROME_WINDOWS, 6000)]

        analysis = evaluate_login(history, BERLIN, CHROME_WINDOWS, now=NOW)

        travel = [r for r in analysis.reasons if r.startswith("Impossible travel")]
        assert len(travel) == 1
        assert "30 minutes" in travel[0]
        assert "France" in travel[0]

    def test_country_change_after_an_hour_is_not_impossible_travel(self):
        history = [_entry(PARIS, CHROME_WINDOWS, 90), _entry(BERLIN, CHROME_WINDOWS, 6000)]

        analysis = evaluate_login(history, BERLIN, CHROME_WINDOWS, now=NOW)

        assert not any(r.startswith("Impossible travel") for r in analysis.reasons)

    def test_velocity(self):
        history = [_entry(BERLIN, CHROME_WINDOWS, 600)]

        analysis = evaluate_login(history, BERLIN, CHROME_WINDOWS, recent_failures=3, now=NOW)

        assert analysis.is_suspicious is True
        assert analysis.reasons == ["3 failed login attempts from this IP in the last 15 minutes"]

    def test_two_failures_below_threshold(self):
        history = [_entry(BERLIN, CHROME_WINDOWS, 600)]

        analysis = evaluate_login(history, BERLIN, CHROME_WINDOWS, recent_failures=2, now=NOW)

        assert analysis.is_suspicious is False


# =============================================================================
# DETECTOR TESTS
# =============================================================================

class TestDetector:
    """SuspiciousActivityDetector against the audit table."""

    async def test_analyze_uses_recorded_history(self, db_session):
        user_id = uuid4()
        await login_log.record_event(
            db_session,
            AuditEventType.LOGIN,
            AuditStatus.SUCCESS,
            user_id=user_id,
            ip_address="203.0.113.7",
            device=CHROME_WINDOWS,
            geo=BERLIN,
        )
        for _ in range(3):
            await login_log.record_event(
                db_session,
                AuditEventType.LOGIN,
                AuditStatus.FAILURE,
                ip_address="198.51.100.9",
                reason="invalid_credentials",
            )

        analysis = await SuspiciousActivityDetector().analyze(
            db_session, user_id, "198.51.100.9", PARIS, FIREFOX_LINUX
        )

        assert analysis.is_suspicious is True
        assert analysis.is_new_location is True
        assert analysis.is_new_device is True
        assert any("failed login attempts" in r for r in analysis.reasons)

    async def test_analyze_degrades_to_clean_result(self):
        """A broken history lookup never blocks or flags the login."""

        class BrokenSession:
            def exec(self, *args, **kwargs):
                raise RuntimeError("database unavailable")

        analysis = await SuspiciousActivityDetector().analyze(
            BrokenSession(), uuid4(), "203.0.113.7", BERLIN, parse_user_agent(None)
        )

        assert analysis.is_suspicious is False
        assert analysis.reasons == []
