"""
ResumeCustomizer Pro - Login Audit Log

Append-only record of every login, logout, 2FA, reset and verification
event, chained with SHA-256 for tamper evidence.

Writes are best-effort: a failed audit insert is logged and rolled back
but never fails the login or logout it describes.
"""

import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session as DBSession, select

from resumepro.audit.hash_chain import compute_genesis_hash, hash_entry, verify_chain
from resumepro.audit.models import (
    AuditEventType,
    AuditStatus,
    ChainVerificationResult,
    LoginAuditEntry,
)
from resumepro.auth.devices import DeviceInfo
from resumepro.auth.models import utcnow
from resumepro.logging import get_logger
from resumepro.services.geolocation import GeoLocation

logger = get_logger(__name__)

# Serializes "read chain head + insert" within the process
_chain_lock = threading.Lock()

BASELINE_SIZE = 20


def _latest_hash(db: DBSession) -> str:
    statement = select(LoginAuditEntry.hash).order_by(LoginAuditEntry.id.desc()).limit(1)
    latest = db.exec(statement).first()
    return latest or compute_genesis_hash()


async def record_event(
    db: DBSession,
    event_type: AuditEventType,
    status: AuditStatus,
    user_id: Optional[UUID] = None,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    device: Optional[DeviceInfo] = None,
    geo: Optional[GeoLocation] = None,
    is_suspicious: bool = False,
    suspicious_reasons: Optional[List[str]] = None,
    is_new_location: bool = False,
    is_new_device: bool = False,
    tracking: Optional[Dict[str, Any]] = None,
) -> Optional[LoginAuditEntry]:
    """
    Append an audit entry.

    Returns:
        The stored entry, or None if the write failed
    """
    device = device or DeviceInfo()
    geo = geo or GeoLocation()

    entry = LoginAuditEntry(
        user_id=user_id,
        event_type=AuditEventType(event_type).value,
        status=AuditStatus(status).value,
        reason=reason,
        ip_address=ip_address,
        city=geo.city,
        region=geo.region,
        country=geo.country,
        country_code=geo.country_code,
        timezone=geo.timezone,
        isp=geo.isp,
        user_agent=user_agent,
        browser=device.browser,
        browser_version=device.browser_version,
        os=device.os,
        os_version=device.os_version,
        device_type=device.device_type,
        is_suspicious=is_suspicious,
        suspicious_reasons=list(suspicious_reasons or []),
        is_new_location=is_new_location,
        is_new_device=is_new_device,
        tracking=tracking or {},
        created_at=utcnow(),
    )

    try:
        with _chain_lock:
            entry.prev_hash = _latest_hash(db)
            entry.hash = hash_entry(entry, entry.prev_hash)
            db.add(entry)
            db.commit()
            db.refresh(entry)
    except Exception as e:
        db.rollback()
        logger.error(
            "audit_write_failed",
            event_type=entry.event_type,
            status=entry.status,
            user_id=str(user_id) if user_id else None,
            error=str(e),
        )
        return None

    return entry


async def recent_successful_logins(
    db: DBSession,
    user_id: UUID,
    limit: int = BASELINE_SIZE,
) -> List[LoginAuditEntry]:
    """Most recent successful logins of a user, newest first."""
    statement = (
        select(LoginAuditEntry)
        .where(
            LoginAuditEntry.user_id == user_id,
            LoginAuditEntry.event_type == AuditEventType.LOGIN.value,
            LoginAuditEntry.status == AuditStatus.SUCCESS.value,
        )
        .order_by(LoginAuditEntry.id.desc())
        .limit(limit)
    )
    return list(db.exec(statement).all())


async def count_recent_failures(db: DBSession, ip_address: str, since: datetime) -> int:
    """Failed login attempts from an IP since a point in time."""
    statement = select(func.count(LoginAuditEntry.id)).where(
        LoginAuditEntry.ip_address == ip_address,
        LoginAuditEntry.event_type == AuditEventType.LOGIN.value,
        LoginAuditEntry.status == AuditStatus.FAILURE.value,
        LoginAuditEntry.created_at >= since,
    )
    return db.exec(statement).one()


async def login_history(
    db: DBSession,
    user_id: UUID,
    limit: int = 50,
    offset: int = 0,
) -> List[LoginAuditEntry]:
    statement = (
        select(LoginAuditEntry)
        .where(LoginAuditEntry.user_id == user_id)
        .order_by(LoginAuditEntry.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(db.exec(statement).all())


async def suspicious_logins(
    db: DBSession,
    page: int = 1,
    page_size: int = 50,
    days: Optional[int] = None,
) -> Tuple[List[LoginAuditEntry], int]:
    """
    Paginated suspicious logins across all users, newest first.

    Returns:
        Tuple of (entries for the page, total matching)
    """
    conditions = [LoginAuditEntry.is_suspicious == True]  # noqa: E712
    if days:
        conditions.append(LoginAuditEntry.created_at >= utcnow() - timedelta(days=days))

    total = db.exec(select(func.count(LoginAuditEntry.id)).where(*conditions)).one()
    statement = (
        select(LoginAuditEntry)
        .where(*conditions)
        .order_by(LoginAuditEntry.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(db.exec(statement).all()), total


async def verify_audit_chain(db: DBSession) -> ChainVerificationResult:
    entries = db.exec(select(LoginAuditEntry).order_by(LoginAuditEntry.id.asc())).all()
    return verify_chain(entries)
