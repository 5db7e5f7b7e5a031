"""
ResumeCustomizer Pro - Credential Store

Persistence for user accounts: lookup by normalized email, password
and token-hash updates, lockout counters and approval state.

Security:
- The failed-login counter and lock timestamp change in ONE UPDATE
  statement, so concurrent failures can never leave them inconsistent
- Reset and verification tokens are consumed with a conditional UPDATE
  (WHERE hash = :presented) so each one works at most once
"""

from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, case, null, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session as DBSession, select

from resumepro.auth.devices import DeviceInfo
from resumepro.auth.errors import ConflictError
from resumepro.auth.models import ApprovalStatus, Role, User, utcnow
from resumepro.config import settings
from resumepro.logging import get_logger
from resumepro.services.geolocation import GeoLocation

logger = get_logger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


async def get_user(db: DBSession, user_id: UUID) -> Optional[User]:
    return db.get(User, user_id)


async def get_user_by_email(db: DBSession, email: str) -> Optional[User]:
    statement = select(User).where(User.email == normalize_email(email))
    return db.exec(statement).first()


async def create_user(
    db: DBSession,
    email: str,
    password_hash: str,
    pseudo_name: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    role: Role = Role.STANDARD,
    verification_token_hash: Optional[str] = None,
    verification_expires: Optional[datetime] = None,
) -> User:
    """
    Insert a new, unverified account.

    Raises:
        ConflictError: Email already registered (generic wording)
    """
    now = utcnow()
    user = User(
        email=normalize_email(email),
        password_hash=password_hash,
        pseudo_name=pseudo_name,
        first_name=first_name,
        last_name=last_name,
        role=role,
        email_verified=False,
        approval_status=ApprovalStatus.PENDING_VERIFICATION,
        failed_login_attempts=0,
        email_verification_token_hash=verification_token_hash,
        email_verification_expires=verification_expires,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError()
    db.refresh(user)
    return user


# =============================================================================
# Lockout
# =============================================================================

async def record_failed_login(db: DBSession, user_id: UUID) -> Optional[User]:
    """
    Count a wrong password and lock the account at the threshold.

    An expired lock restarts the count at 1. Both columns are computed
    from the row's current values inside a single UPDATE.

    Returns:
        The refreshed user
    """
    now = utcnow()
    threshold = settings.MAX_LOGIN_ATTEMPTS
    locked_until = now + timedelta(minutes=settings.LOCKOUT_MINUTES)

    lock_expired = and_(
        User.account_locked_until.is_not(None),
        User.account_locked_until <= now,
    )
    new_count = case((lock_expired, 1), else_=User.failed_login_attempts + 1)

    statement = (
        update(User)
        .where(User.id == user_id)
        .values(
            failed_login_attempts=new_count,
            account_locked_until=case(
                (new_count >= threshold, locked_until),
                (lock_expired, null()),
                else_=User.account_locked_until,
            ),
            updated_at=now,
        )
    )
    db.execute(statement)
    db.commit()

    user = db.get(User, user_id)
    if user is not None:
        db.refresh(user)
        if user.is_locked:
            logger.warning(
                "account_locked",
                user_id=str(user_id),
                attempts=user.failed_login_attempts,
                locked_until=user.account_locked_until.isoformat(),
            )
    return user


async def record_successful_login(
    db: DBSession,
    user: User,
    ip_address: Optional[str],
    user_agent: Optional[str],
    geo: GeoLocation,
    device: DeviceInfo,
) -> None:
    """Stage the lockout reset and last-login metadata (committed by the caller)."""
    now = utcnow()
    user.failed_login_attempts = 0
    user.account_locked_until = None
    user.last_login_at = now
    user.last_ip_address = ip_address
    user.last_user_agent = (user_agent or "")[:512] or None
    user.last_login_city = geo.city
    user.last_login_country = geo.country
    user.last_login_browser = device.browser
    user.last_login_os = device.os
    user.last_login_device = device.device_type
    user.updated_at = now
    db.add(user)
    db.flush()


# =============================================================================
# Single-use tokens
# =============================================================================

async def store_verification_token(
    db: DBSession, user: User, token_hash: str, expires_at: datetime
) -> None:
    """Replace any previous verification token."""
    user.email_verification_token_hash = token_hash
    user.email_verification_expires = expires_at
    db.add(user)
    db.commit()


async def store_reset_token(
    db: DBSession, user: User, token_hash: str, expires_at: datetime
) -> None:
    """Replace any previous reset token."""
    user.password_reset_token_hash = token_hash
    user.password_reset_expires = expires_at
    db.add(user)
    db.commit()


async def find_user_by_verification_token(db: DBSession, token_hash: str) -> Optional[User]:
    statement = select(User).where(
        User.email_verification_token_hash == token_hash,
        User.email_verification_expires > utcnow(),
    )
    return db.exec(statement).first()


async def find_user_by_reset_token(db: DBSession, token_hash: str) -> Optional[User]:
    statement = select(User).where(
        User.password_reset_token_hash == token_hash,
        User.password_reset_expires > utcnow(),
    )
    return db.exec(statement).first()


async def consume_verification_token(db: DBSession, user_id: UUID, token_hash: str) -> bool:
    """
    Mark the email verified and move the account to pending approval.

    Returns:
        False if the token was already consumed or superseded
    """
    now = utcnow()
    statement = (
        update(User)
        .where(User.id == user_id, User.email_verification_token_hash == token_hash)
        .values(
            email_verified=True,
            email_verification_token_hash=None,
            email_verification_expires=None,
            updated_at=now,
        )
    )
    result = db.execute(statement)
    db.commit()
    if result.rowcount != 1:
        return False

    user = db.get(User, user_id)
    db.refresh(user)
    if user.approval_status == ApprovalStatus.PENDING_VERIFICATION:
        user.approval_status = ApprovalStatus.PENDING_APPROVAL
        db.add(user)
        db.commit()
    return True


async def consume_reset_token(
    db: DBSession, user_id: UUID, token_hash: str, new_password_hash: str
) -> bool:
    """
    Set the new password, clear the token and any lockout.

    Returns:
        False if the token was already consumed or superseded
    """
    now = utcnow()
    statement = (
        update(User)
        .where(User.id == user_id, User.password_reset_token_hash == token_hash)
        .values(
            password_hash=new_password_hash,
            password_reset_token_hash=None,
            password_reset_expires=None,
            failed_login_attempts=0,
            account_locked_until=None,
            last_password_change=now,
            updated_at=now,
        )
    )
    result = db.execute(statement)
    db.commit()
    return result.rowcount == 1


async def set_password(db: DBSession, user: User, new_password_hash: str) -> None:
    now = utcnow()
    user.password_hash = new_password_hash
    user.last_password_change = now
    user.updated_at = now
    db.add(user)
    db.commit()
    db.refresh(user)


# =============================================================================
# Approval
# =============================================================================

async def set_approval(
    db: DBSession,
    user: User,
    status: ApprovalStatus,
    admin_id: UUID,
    reason: Optional[str] = None,
) -> User:
    now = utcnow()
    user.approval_status = status
    if status == ApprovalStatus.APPROVED:
        user.approved_by = admin_id
        user.approved_at = now
        user.rejection_reason = None
    elif status == ApprovalStatus.REJECTED:
        user.rejected_by = admin_id
        user.rejected_at = now
        user.rejection_reason = reason
    user.updated_at = now
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


async def list_pending_approvals(db: DBSession) -> List[User]:
    statement = (
        select(User)
        .where(User.approval_status == ApprovalStatus.PENDING_APPROVAL)
        .order_by(User.created_at.asc())
    )
    return list(db.exec(statement).all())
