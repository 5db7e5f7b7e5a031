"""
ResumeCustomizer Pro - Cookie Session Store

Server-side sessions behind the `sid` cookie. The cookie carries a random
identifier; only its keyed hash is stored.

Lifecycle:
- GET /auth/csrf creates an anonymous session holding the CSRF token
- Login replaces it with a brand new session id (the old row is deleted)
- Logout deletes the row and clears every auth cookie
- Expiry is rolling: each request pushes it SESSION_MAX_AGE_SECONDS ahead
"""

import secrets
from datetime import timedelta
from typing import Optional, Tuple
from uuid import UUID

from pydantic import BaseModel
from sqlmodel import Session as DBSession, select
from starlette.responses import Response

from resumepro.auth.models import WebSession, utcnow
from resumepro.auth.tokens import hash_token
from resumepro.config import settings


# Every cookie the auth flows may have set; logout clears all of them
AUTH_COOKIE_NAMES = ("sid", "connect.sid", "csrf_token", "utm_params")


class SessionContext(BaseModel):
    """Snapshot of the current request's cookie session."""
    id: UUID
    raw_sid: str
    csrf_token: str
    user_id: Optional[UUID] = None
    device_session_id: Optional[UUID] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


def generate_csrf_token() -> str:
    return secrets.token_hex(32)


def _expiry():
    return utcnow() + timedelta(seconds=settings.SESSION_MAX_AGE_SECONDS)


def _context(row: WebSession, raw_sid: str) -> SessionContext:
    return SessionContext(
        id=row.id,
        raw_sid=raw_sid,
        csrf_token=row.csrf_token,
        user_id=row.user_id,
        device_session_id=row.device_session_id,
    )


def _new_row(
    user_id: Optional[UUID],
    device_session_id: Optional[UUID],
    ip_address: Optional[str],
    user_agent: Optional[str],
):
    raw_sid = secrets.token_urlsafe(32)
    now = utcnow()
    row = WebSession(
        sid_hash=hash_token(raw_sid),
        user_id=user_id,
        device_session_id=device_session_id,
        csrf_token=generate_csrf_token(),
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=now,
        last_seen=now,
        expires_at=_expiry(),
    )
    return raw_sid, row


async def create_web_session(
    db: DBSession,
    user_id: Optional[UUID] = None,
    device_session_id: Optional[UUID] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> SessionContext:
    raw_sid, row = _new_row(user_id, device_session_id, ip_address, user_agent)
    db.add(row)
    db.commit()
    db.refresh(row)
    return _context(row, raw_sid)


async def load_web_session(db: DBSession, raw_sid: Optional[str]) -> Optional[SessionContext]:
    """
    Resolve a cookie value to its session, extending the rolling expiry.

    Expired sessions are deleted and reported as absent.
    """
    if not raw_sid:
        return None

    row = db.exec(select(WebSession).where(WebSession.sid_hash == hash_token(raw_sid))).first()
    if not row:
        return None

    now = utcnow()
    if row.expires_at <= now:
        db.delete(row)
        db.commit()
        return None

    row.last_seen = now
    row.expires_at = _expiry()
    db.add(row)
    db.commit()
    db.refresh(row)
    return _context(row, raw_sid)


def regenerate_session_id(
    user_id: UUID,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Tuple[str, WebSession]:
    """
    Fresh session id and row for a login.

    Nothing is written here; `persist_login_session` swaps the row in.
    """
    return _new_row(user_id, None, ip_address, user_agent)


async def persist_login_session(
    db: DBSession,
    current: Optional[SessionContext],
    raw_sid: str,
    row: WebSession,
    device_session_id: Optional[UUID],
) -> SessionContext:
    """
    Replace the pre-login session with `row` and commit.

    The old row is deleted in the same transaction as the new row and
    anything else already staged on `db`; when this returns the new
    session is durable.
    """
    if current is not None:
        old = db.get(WebSession, current.id)
        if old is not None:
            db.delete(old)

    row.device_session_id = device_session_id
    db.add(row)
    db.commit()
    db.refresh(row)
    return _context(row, raw_sid)


async def destroy_web_session(db: DBSession, session_id: UUID) -> bool:
    row = db.get(WebSession, session_id)
    if not row:
        return False
    db.delete(row)
    db.commit()
    return True


async def destroy_user_web_sessions(
    db: DBSession,
    user_id: UUID,
    keep_session_id: Optional[UUID] = None,
) -> int:
    """Delete every cookie session of a user (force logout)."""
    rows = db.exec(select(WebSession).where(WebSession.user_id == user_id)).all()
    count = 0
    for row in rows:
        if row.id == keep_session_id:
            continue
        db.delete(row)
        count += 1
    db.commit()
    return count


async def purge_expired_web_sessions(db: DBSession) -> int:
    rows = db.exec(select(WebSession).where(WebSession.expires_at < utcnow())).all()
    for row in rows:
        db.delete(row)
    db.commit()
    return len(rows)


# =============================================================================
# Cookies
# =============================================================================

def _cookie_kwargs() -> dict:
    return {
        "max_age": settings.SESSION_MAX_AGE_SECONDS,
        "path": "/",
        "secure": settings.is_production,
        "samesite": "strict" if settings.is_production else "lax",
    }


def set_session_cookies(response: Response, session: SessionContext) -> None:
    """Set the http-only session cookie and the script-readable CSRF cookie."""
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session.raw_sid,
        httponly=True,
        **_cookie_kwargs(),
    )
    response.set_cookie(
        settings.CSRF_COOKIE_NAME,
        session.csrf_token,
        httponly=False,
        **_cookie_kwargs(),
    )


def clear_auth_cookies(response: Response) -> None:
    """Expire every auth-related cookie. Used by all logout variants."""
    names = set(AUTH_COOKIE_NAMES) | {settings.SESSION_COOKIE_NAME, settings.CSRF_COOKIE_NAME}
    for name in sorted(names):
        response.delete_cookie(name, path="/")
