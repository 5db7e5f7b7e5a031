"""
ResumeCustomizer Pro - Device Session Registry

One DeviceSession row per authenticated device/browser, holding the
keyed hash of that device's refresh token.

Security:
- Revocation is monotonic: revoked rows are never reactivated
- A new login always creates a new row
- Access tokens name their device session, so revoking the row
  invalidates both the refresh token and outstanding access tokens
"""

from typing import List, Optional
from uuid import UUID

from sqlmodel import Session as DBSession, select

from resumepro.auth.devices import DeviceInfo
from resumepro.auth.models import DeviceSession, utcnow
from resumepro.auth.tokens import refresh_token_lifetime
from resumepro.logging import get_logger

logger = get_logger(__name__)


async def create_device_session(
    db: DBSession,
    user_id: UUID,
    refresh_token_hash: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    device: Optional[DeviceInfo] = None,
) -> DeviceSession:
    """
    Register a freshly authenticated device.

    The row is flushed, not committed: the login commits it together
    with the new cookie session.

    Args:
        db: Database session
        user_id: Owner
        refresh_token_hash: Keyed hash of the refresh token issued to the device
        ip_address: Client IP
        user_agent: Client user-agent
        device: Parsed user agent

    Returns:
        Created DeviceSession
    """
    now = utcnow()
    device = device or DeviceInfo()

    session = DeviceSession(
        user_id=user_id,
        refresh_token_hash=refresh_token_hash,
        user_agent=user_agent,
        ip_address=ip_address,
        browser=device.browser,
        os=device.os,
        device_type=device.device_type,
        created_at=now,
        last_active=now,
        expires_at=now + refresh_token_lifetime(),
        revoked=False,
    )

    db.add(session)
    db.flush()

    logger.info("device_session_staged", user_id=str(user_id), device_session_id=str(session.id))
    return session


async def get_device_session(db: DBSession, device_session_id: UUID) -> Optional[DeviceSession]:
    return db.get(DeviceSession, device_session_id)


async def find_active_by_token_hash(db: DBSession, token_hash: str) -> Optional[DeviceSession]:
    """
    Resolve a refresh token hash to its live device session.

    Returns:
        The session if it exists, is not revoked and has not expired
    """
    statement = select(DeviceSession).where(
        DeviceSession.refresh_token_hash == token_hash,
        DeviceSession.revoked == False,  # noqa: E712
    )
    session = db.exec(statement).first()

    if not session or session.expires_at <= utcnow():
        return None
    return session


async def touch_device_session(db: DBSession, session: DeviceSession) -> None:
    session.last_active = utcnow()
    db.add(session)
    db.commit()


async def list_device_sessions(
    db: DBSession,
    user_id: UUID,
    active_only: bool = False,
) -> List[DeviceSession]:
    """
    List a user's devices, most recently active first.

    Args:
        active_only: Exclude revoked and expired sessions
    """
    statement = select(DeviceSession).where(DeviceSession.user_id == user_id)
    if active_only:
        statement = statement.where(
            DeviceSession.revoked == False,  # noqa: E712
            DeviceSession.expires_at > utcnow(),
        )
    statement = statement.order_by(DeviceSession.last_active.desc())
    return list(db.exec(statement).all())


def _mark_revoked(db: DBSession, sessions: List[DeviceSession]) -> int:
    now = utcnow()
    count = 0
    for session in sessions:
        if session.revoked:
            continue
        session.revoked = True
        session.revoked_at = now
        db.add(session)
        count += 1
    db.commit()
    return count


async def revoke_device_session(db: DBSession, device_session_id: UUID) -> bool:
    """
    Revoke one device session.

    Returns:
        True if the session was live and is now revoked
    """
    session = db.get(DeviceSession, device_session_id)
    if not session:
        return False
    return _mark_revoked(db, [session]) == 1


async def revoke_by_token_hash(db: DBSession, token_hash: str) -> Optional[DeviceSession]:
    """
    Revoke the device session holding a refresh token.

    Returns:
        The matching session (revoked now or earlier), or None if unknown
    """
    statement = select(DeviceSession).where(DeviceSession.refresh_token_hash == token_hash)
    session = db.exec(statement).first()
    if not session:
        return None
    _mark_revoked(db, [session])
    db.refresh(session)
    return session


async def revoke_matching_sessions(
    db: DBSession,
    user_id: UUID,
    user_agent: Optional[str],
    ip_address: Optional[str],
) -> int:
    """Revoke live sessions for the same user, user agent and IP (cookie logout)."""
    statement = select(DeviceSession).where(
        DeviceSession.user_id == user_id,
        DeviceSession.user_agent == user_agent,
        DeviceSession.ip_address == ip_address,
        DeviceSession.revoked == False,  # noqa: E712
    )
    return _mark_revoked(db, list(db.exec(statement).all()))


async def revoke_all_user_sessions(
    db: DBSession,
    user_id: UUID,
    keep_session_id: Optional[UUID] = None,
) -> int:
    """
    Revoke every live session of a user (log out everywhere).

    Args:
        keep_session_id: Optional session to leave active (the caller's own)

    Returns:
        Number of sessions revoked
    """
    statement = select(DeviceSession).where(
        DeviceSession.user_id == user_id,
        DeviceSession.revoked == False,  # noqa: E712
    )
    sessions = [s for s in db.exec(statement).all() if s.id != keep_session_id]
    count = _mark_revoked(db, sessions)

    logger.info("device_sessions_revoked", user_id=str(user_id), count=count)
    return count


async def cleanup_expired_sessions(db: DBSession) -> int:
    """
    Mark expired sessions revoked.

    Should be run periodically (e.g., daily cron job).
    """
    statement = select(DeviceSession).where(
        DeviceSession.revoked == False,  # noqa: E712
        DeviceSession.expires_at < utcnow(),
    )
    return _mark_revoked(db, list(db.exec(statement).all()))
