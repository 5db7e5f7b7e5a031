"""
ResumeCustomizer Pro - Suspicious Login Detection

Compares a login's location and device against the user's last 20
successful logins and flags:
- a location (city-region-country) never seen for the user
- a device (browser-os-type) never seen for the user
- impossible travel: a different country than a login less than 1 hour ago
- velocity: 3+ failed attempts from the same IP in the last 15 minutes

Detection is advisory: it annotates the audit trail and triggers
notifications, it never denies a login. Analysis errors degrade to a
clean (non-suspicious) result.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, Field
from sqlmodel import Session as DBSession

from resumepro.audit import login_log
from resumepro.audit.models import LoginAuditEntry
from resumepro.auth.devices import DeviceInfo
from resumepro.auth.models import User, utcnow
from resumepro.logging import get_logger
from resumepro.services.email import EmailService
from resumepro.services.geolocation import GeoLocation

logger = get_logger(__name__)

IMPOSSIBLE_TRAVEL_WINDOW = timedelta(hours=1)
VELOCITY_WINDOW = timedelta(minutes=15)
VELOCITY_THRESHOLD = 3


class SuspiciousAnalysis(BaseModel):
    is_suspicious: bool = False
    reasons: List[str] = Field(default_factory=list)
    is_new_location: bool = False
    is_new_device: bool = False


def _location_key(entry: LoginAuditEntry) -> str:
    return f"{entry.city or ''}-{entry.region or ''}-{entry.country or ''}"


def _device_key(entry: LoginAuditEntry) -> str:
    return f"{entry.browser}-{entry.os}-{entry.device_type}".lower()


def evaluate_login(
    history: Sequence[LoginAuditEntry],
    geo: GeoLocation,
    device: DeviceInfo,
    recent_failures: int = 0,
    now: Optional[datetime] = None,
) -> SuspiciousAnalysis:
    """
    Score a login against prior successful logins (newest first).

    A first login has nothing to compare with: it is reported as a new
    location and a new device without being suspicious.
    """
    if not history:
        return SuspiciousAnalysis(is_new_location=True, is_new_device=True)

    now = now or utcnow()
    analysis = SuspiciousAnalysis()

    if geo.is_known:
        known_locations = {_location_key(entry) for entry in history}
        if geo.location_key not in known_locations:
            analysis.is_new_location = True
            known_countries = {entry.country for entry in history if entry.country}
            if geo.country not in known_countries:
                analysis.reasons.append(f"Login from new country: {geo.country}")
            else:
                place = ", ".join(p for p in (geo.city, geo.region, geo.country) if p)
                analysis.reasons.append(f"Login from new location: {place}")

    known_devices = {_device_key(entry) for entry in history}
    if device.fingerprint not in known_devices:
        analysis.is_new_device = True
        analysis.reasons.append(f"Login from new device: {device.label}")

    last = history[0]
    if (
        geo.country
        and last.country
        and last.country != geo.country
        and now - last.created_at < IMPOSSIBLE_TRAVEL_WINDOW
    ):
        minutes = max(int((now - last.created_at).total_seconds() // 60), 0)
        analysis.reasons.append(
            f"Impossible travel: login from {geo.country} {minutes} minutes after a login from {last.country}"
        )

    if recent_failures >= VELOCITY_THRESHOLD:
        analysis.reasons.append(
            f"{recent_failures} failed login attempts from this IP in the last 15 minutes"
        )

    analysis.is_suspicious = bool(analysis.reasons)
    return analysis


class SuspiciousActivityDetector:
    """
    Runs the login analysis and sends the resulting notifications.

    Usage:
        detector = SuspiciousActivityDetector(email_service)
        analysis = await detector.analyze(db, user.id, ip, geo, device)
    """

    def __init__(self, email_service: Optional[EmailService] = None):
        self.email_service = email_service

    async def analyze(
        self,
        db: DBSession,
        user_id: UUID,
        ip_address: Optional[str],
        geo: GeoLocation,
        device: DeviceInfo,
    ) -> SuspiciousAnalysis:
        try:
            now = utcnow()
            history = await login_log.recent_successful_logins(db, user_id)
            failures = 0
            if ip_address:
                failures = await login_log.count_recent_failures(db, ip_address, now - VELOCITY_WINDOW)
            analysis = evaluate_login(history, geo, device, failures, now)
        except Exception as e:
            logger.error("suspicious_analysis_failed", user_id=str(user_id), error=str(e))
            return SuspiciousAnalysis()

        if analysis.is_suspicious:
            logger.warning(
                "suspicious_login_detected",
                user_id=str(user_id),
                ip=ip_address,
                reasons=analysis.reasons,
            )
        return analysis

    async def alert_admin(
        self,
        user: User,
        analysis: SuspiciousAnalysis,
        ip_address: Optional[str],
        geo: GeoLocation,
        device: DeviceInfo,
    ) -> None:
        """Email the administrator about a suspicious login (best-effort)."""
        if self.email_service is None:
            return
        try:
            self.email_service.send_suspicious_login_alert(
                user_email=user.email,
                reasons=analysis.reasons,
                ip_address=ip_address,
                location=", ".join(p for p in (geo.city, geo.country) if p) or "Unknown",
                device=device.label,
            )
        except Exception as e:
            logger.error("suspicious_alert_failed", user_id=str(user.id), error=str(e))

    async def notify_user(
        self,
        user: User,
        ip_address: Optional[str],
        geo: GeoLocation,
        device: DeviceInfo,
    ) -> None:
        """Tell the user about a sign-in from a new device (best-effort)."""
        if self.email_service is None:
            return
        try:
            self.email_service.send_new_device_notification(
                to_email=user.email,
                ip_address=ip_address,
                location=", ".join(p for p in (geo.city, geo.country) if p) or "Unknown",
                device=device.label,
            )
        except Exception as e:
            logger.error("new_device_notification_failed", user_id=str(user.id), error=str(e))
