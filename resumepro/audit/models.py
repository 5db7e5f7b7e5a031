"""
ResumeCustomizer Pro - Audit Models

Login audit table plus the Pydantic models used to report on it.
Entries are append-only; the hash columns make edits and deletions
detectable (see resumepro.audit.hash_chain).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field as PydanticField
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON, Boolean, DateTime, String

from resumepro.auth.models import utcnow


class AuditEventType(str, Enum):
    """Categories of auditable auth events."""
    LOGIN = "login"
    LOGOUT = "logout"
    TWO_FACTOR_VERIFY = "two_factor_verify"
    TWO_FACTOR_CHANGE = "two_factor_change"
    REGISTER = "register"
    EMAIL_VERIFY = "email_verify"
    PASSWORD_RESET_REQUEST = "password_reset_request"
    PASSWORD_RESET = "password_reset"
    PASSWORD_CHANGE = "password_change"
    SESSION_REVOKED = "session_revoked"
    FORCE_LOGOUT = "force_logout"
    TOKEN_REFRESH = "token_refresh"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class LoginAuditEntry(SQLModel, table=True):
    """
    One auth event with outcome, network and device context.

    Successful logins double as the baseline for suspicious-login
    detection; failures feed the velocity check.
    """
    __tablename__ = "login_audit"

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: UUID = Field(default_factory=uuid4, index=True)
    user_id: Optional[UUID] = Field(default=None, index=True)
    event_type: str = Field(sa_column=Column(String(40), nullable=False, index=True))
    status: str = Field(sa_column=Column(String(10), nullable=False))
    reason: Optional[str] = Field(default=None, max_length=200)

    ip_address: Optional[str] = Field(default=None, max_length=45, index=True)
    city: Optional[str] = Field(default=None, max_length=100)
    region: Optional[str] = Field(default=None, max_length=100)
    country: Optional[str] = Field(default=None, max_length=100)
    country_code: Optional[str] = Field(default=None, max_length=10)
    timezone: Optional[str] = Field(default=None, max_length=64)
    isp: Optional[str] = Field(default=None, max_length=200)

    user_agent: Optional[str] = Field(default=None, max_length=512)
    browser: Optional[str] = Field(default=None, max_length=100)
    browser_version: Optional[str] = Field(default=None, max_length=50)
    os: Optional[str] = Field(default=None, max_length=100)
    os_version: Optional[str] = Field(default=None, max_length=50)
    device_type: Optional[str] = Field(default=None, max_length=50)

    is_suspicious: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False, index=True),
    )
    suspicious_reasons: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    is_new_location: bool = Field(default=False)
    is_new_device: bool = Field(default=False)
    tracking: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, index=True),
    )
    prev_hash: str = Field(sa_column=Column(String(64), nullable=False))
    hash: str = Field(sa_column=Column(String(64), nullable=False))


class LoginHistoryItem(BaseModel):
    """Admin-facing view of an audit entry."""
    id: int
    user_id: Optional[UUID] = None
    event_type: str
    status: str
    reason: Optional[str] = None
    ip_address: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    device_type: Optional[str] = None
    is_suspicious: bool = False
    suspicious_reasons: List[str] = PydanticField(default_factory=list)
    is_new_location: bool = False
    is_new_device: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class ChainVerificationResult(BaseModel):
    """Result of audit chain verification."""
    is_valid: bool
    event_count: int
    genesis_hash: str
    final_hash: Optional[str] = None
    broken_at: Optional[int] = PydanticField(
        None,
        description="Entry id where the chain broke, if invalid"
    )
