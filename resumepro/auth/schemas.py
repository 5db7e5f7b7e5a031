"""
ResumeCustomizer Pro - Authentication Request/Response Schemas

Pydantic models for API request validation and response serialization.
Field aliases follow the browser client's camelCase JSON.
"""

import re
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, validator


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")
MAX_REFRESH_TOKEN_LENGTH = 256


def _normalize_email(value: str) -> str:
    value = (value or "").strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email format")
    return value


class CamelModel(BaseModel):
    class Config:
        populate_by_name = True


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    email: str = Field(..., max_length=255, description="User email address")
    password: str = Field(..., max_length=256, description="User password")

    @validator("email")
    def email_format(cls, v):
        return _normalize_email(v)


class RegisterRequest(CamelModel):
    """Request body for POST /auth/register."""
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=256)
    pseudo_name: str = Field(..., alias="pseudoName", min_length=1, max_length=100)
    first_name: Optional[str] = Field(default=None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(default=None, alias="lastName", max_length=100)

    @validator("email")
    def email_format(cls, v):
        return _normalize_email(v)

    @validator("pseudo_name")
    def pseudo_name_not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("pseudoName is required")
        return v


class VerifyTwoFactorRequest(CamelModel):
    """Request body for POST /auth/verify-2fa."""
    code: str = Field(..., max_length=32)
    temp_token: str = Field(..., alias="tempToken", max_length=2048)


class RefreshRequest(CamelModel):
    """Request body for POST /auth/refresh."""
    refresh_token: str = Field(..., alias="refreshToken", max_length=MAX_REFRESH_TOKEN_LENGTH)


class EmailRequest(BaseModel):
    """Request body for password reset and verification resend."""
    email: str = Field(..., max_length=255)

    @validator("email")
    def email_lower(cls, v):
        return (v or "").strip().lower()


class ResetPasswordRequest(CamelModel):
    """Request body for POST /auth/reset-password."""
    token: str = Field(..., max_length=256)
    new_password: str = Field(..., alias="newPassword", max_length=256)


class ChangePasswordRequest(CamelModel):
    """Request body for POST /auth/change-password."""
    current_password: str = Field(..., alias="currentPassword", max_length=256)
    new_password: str = Field(..., alias="newPassword", max_length=256)


class TwoFactorToggleRequest(BaseModel):
    """Request body for POST /auth/two-factor."""
    enabled: bool
    password: str = Field(..., max_length=256)


class RejectUserRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class DeviceSessionInfo(CamelModel):
    """One device as shown to its owner or an admin."""
    id: UUID
    browser: Optional[str] = None
    os: Optional[str] = None
    device_type: Optional[str] = Field(default=None, alias="deviceType")
    ip_address: Optional[str] = Field(default=None, alias="ipAddress")
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    created_at: datetime = Field(alias="createdAt")
    last_active: datetime = Field(alias="lastActive")
    expires_at: datetime = Field(alias="expiresAt")
    revoked: bool = False
    is_current: bool = Field(default=False, alias="isCurrent")

    @classmethod
    def from_device(cls, device, current_id: Optional[UUID] = None) -> "DeviceSessionInfo":
        return cls(
            id=device.id,
            browser=device.browser,
            os=device.os,
            device_type=device.device_type,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
            created_at=device.created_at,
            last_active=device.last_active,
            expires_at=device.expires_at,
            revoked=device.revoked,
            is_current=current_id is not None and device.id == current_id,
        )


class DeviceListResponse(BaseModel):
    sessions: List[DeviceSessionInfo]
    total: int
