"""
ResumeCustomizer Pro - Authentication Database Models

SQLModel-based models for accounts, device sessions, cookie sessions
and pending two-factor challenges.

Security:
- Passwords stored as bcrypt hashes only
- Refresh, reset, verification and session tokens stored as keyed hashes
- Device sessions are revoked, never deleted
- All timestamps are naive UTC
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Enum as SQLEnum


def utcnow() -> datetime:
    """Current time as naive UTC (the storage convention for every table)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    """
    User roles.

    Higher roles are supersets of lower ones: admin > marketing > standard.
    """
    STANDARD = "standard"
    MARKETING = "marketing"
    ADMIN = "admin"


ROLE_LEVELS = {
    Role.STANDARD: 1,
    Role.MARKETING: 2,
    Role.ADMIN: 3,
}


def role_at_least(role: str, required: Role) -> bool:
    """True if `role` is `required` or a role above it."""
    try:
        level = ROLE_LEVELS[Role(role)]
    except ValueError:
        return False
    return level >= ROLE_LEVELS[required]


class ApprovalStatus(str, Enum):
    """Account approval lifecycle (registration -> email verified -> admin)."""
    PENDING_VERIFICATION = "pending_verification"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(SQLModel, table=True):
    """
    User account.

    Attributes:
        id: Unique identifier (UUIDv4)
        email: Normalized login identifier (lowercase, trimmed, unique)
        password_hash: bcrypt hash (never store plaintext)
        role: Role for authorization checks
        email_verified: Set once the verification link is followed
        approval_status: Admin approval state
        failed_login_attempts: Consecutive wrong-password count
        account_locked_until: Login refused until this time
    """
    __tablename__ = "users"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique user identifier"
    )
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
        description="Normalized email address (login identifier)"
    )
    password_hash: str = Field(
        sa_column=Column(String(255), nullable=False),
        description="bcrypt password hash"
    )
    pseudo_name: Optional[str] = Field(default=None, max_length=100)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    role: Role = Field(
        default=Role.STANDARD,
        sa_column=Column(SQLEnum(Role), nullable=False, default=Role.STANDARD),
        description="User role"
    )
    email_verified: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False),
    )
    approval_status: ApprovalStatus = Field(
        default=ApprovalStatus.PENDING_VERIFICATION,
        sa_column=Column(
            SQLEnum(ApprovalStatus),
            nullable=False,
            default=ApprovalStatus.PENDING_VERIFICATION,
        ),
    )
    approved_by: Optional[UUID] = Field(default=None)
    approved_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    rejected_by: Optional[UUID] = Field(default=None)
    rejected_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    rejection_reason: Optional[str] = Field(default=None, max_length=500)

    two_factor_enabled: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False),
    )

    # Lockout
    failed_login_attempts: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, default=0),
    )
    account_locked_until: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )

    # Single-use tokens (keyed hashes)
    email_verification_token_hash: Optional[str] = Field(default=None, max_length=64, index=True)
    email_verification_expires: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    password_reset_token_hash: Optional[str] = Field(default=None, max_length=64, index=True)
    password_reset_expires: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    last_password_change: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))

    # Last successful login
    last_login_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    last_ip_address: Optional[str] = Field(default=None, max_length=45)
    last_user_agent: Optional[str] = Field(default=None, max_length=512)
    last_login_city: Optional[str] = Field(default=None, max_length=100)
    last_login_country: Optional[str] = Field(default=None, max_length=100)
    last_login_browser: Optional[str] = Field(default=None, max_length=100)
    last_login_os: Optional[str] = Field(default=None, max_length=100)
    last_login_device: Optional[str] = Field(default=None, max_length=50)

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    )

    @property
    def is_locked(self) -> bool:
        return self.account_locked_until is not None and self.account_locked_until > utcnow()


class DeviceSession(SQLModel, table=True):
    """
    One row per authenticated device/browser.

    A new login always creates a fresh row. Revocation is one-way:
    revoked rows are kept for review and never reactivated.
    """
    __tablename__ = "device_sessions"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", nullable=False, index=True)
    refresh_token_hash: str = Field(
        sa_column=Column(String(64), unique=True, index=True, nullable=False),
        description="Keyed hash of the refresh token"
    )
    user_agent: Optional[str] = Field(default=None, max_length=512)
    ip_address: Optional[str] = Field(default=None, max_length=45)
    browser: Optional[str] = Field(default=None, max_length=100)
    os: Optional[str] = Field(default=None, max_length=100)
    device_type: Optional[str] = Field(default=None, max_length=50)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    last_active: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    expires_at: datetime = Field(sa_column=Column(DateTime, nullable=False))
    revoked: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False),
    )
    revoked_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))

    @property
    def is_active(self) -> bool:
        return not self.revoked and self.expires_at > utcnow()


class WebSession(SQLModel, table=True):
    """
    Server-side cookie session.

    Anonymous sessions (user_id is None) exist before login so the CSRF
    token can be issued; login always replaces the row with a new id.
    """
    __tablename__ = "web_sessions"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    sid_hash: str = Field(
        sa_column=Column(String(64), unique=True, index=True, nullable=False),
        description="Keyed hash of the session cookie value"
    )
    user_id: Optional[UUID] = Field(default=None, foreign_key="users.id", index=True)
    device_session_id: Optional[UUID] = Field(default=None)
    csrf_token: str = Field(sa_column=Column(String(64), nullable=False))
    ip_address: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = Field(default=None, max_length=512)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    last_seen: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    expires_at: datetime = Field(sa_column=Column(DateTime, nullable=False))


class TwoFactorChallenge(SQLModel, table=True):
    """
    Pending email 2FA challenge.

    Lives only between password verification and code verification.
    Deleted on successful use; expired rows are purged.
    """
    __tablename__ = "two_factor_challenges"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", nullable=False, index=True)
    code_hash: str = Field(sa_column=Column(String(64), nullable=False))
    issued_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    expires_at: datetime = Field(sa_column=Column(DateTime, nullable=False))
