"""
ResumeCustomizer Pro - Token Service

Creates and validates every credential the auth flows hand out:
- JWT access tokens (sub, role, did = device session id, jti)
- Opaque refresh tokens (40 random bytes, one per device session)
- Email verification (24h) and password reset (1h) tokens
- 2FA challenge tokens (signed JWT naming the challenge, never the code)
  and 6-digit codes

Security:
- Only keyed HMAC-SHA256 hashes of opaque tokens are persisted
- Short-lived access tokens (15 minutes default)
- Hash comparisons are constant-time
"""

import hashlib
import hmac
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple
from uuid import UUID

from jose import jwt, JWTError
from pydantic import BaseModel, Field

from resumepro.auth.models import utcnow
from resumepro.config import settings


ACCESS_TOKEN_TYPE = "access"
TWO_FACTOR_TOKEN_TYPE = "2fa"
TWO_FACTOR_CODE_LENGTH = 6


class InvalidTokenError(Exception):
    """Raised when a JWT fails signature, expiry or type validation."""
    pass


class TokenPayload(BaseModel):
    """
    Access token payload.

    Attributes:
        sub: User ID
        role: User role
        did: Device session ID (revocation is checked against it)
        jti: Unique token ID for audit correlation
    """
    sub: str = Field(..., description="User ID")
    role: str = Field(..., description="User role")
    did: str = Field(..., description="Device session ID")
    jti: str = Field(..., description="Token ID for audit")
    typ: str = Field(default=ACCESS_TOKEN_TYPE)
    exp: datetime
    iat: datetime


class TwoFactorTokenPayload(BaseModel):
    """Challenge token payload: identifies the challenge, not the code."""
    sub: str
    cid: str = Field(..., description="Challenge ID")
    typ: str
    exp: datetime
    iat: datetime


# =============================================================================
# Opaque tokens
# =============================================================================

def hash_token(raw_token: str) -> str:
    """Keyed SHA-256 of an opaque token; the only form that is stored."""
    return hmac.new(
        settings.token_hash_key.encode("utf-8"),
        raw_token.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def generate_opaque_token(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)


def create_refresh_token() -> Tuple[str, str]:
    """
    Create a refresh token.

    Returns:
        Tuple of (raw token for the client, hash for storage)
    """
    raw = generate_opaque_token(40)
    return raw, hash_token(raw)


def create_expiring_token(lifetime: timedelta) -> Tuple[str, str, datetime]:
    """
    Create a single-use emailed token (verification or reset).

    Returns:
        Tuple of (raw token, hash, expiry)
    """
    raw = generate_opaque_token(32)
    return raw, hash_token(raw), utcnow() + lifetime


def email_verification_lifetime() -> timedelta:
    return timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS)


def password_reset_lifetime() -> timedelta:
    return timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)


def refresh_token_lifetime() -> timedelta:
    return timedelta(hours=settings.REFRESH_TOKEN_EXPIRE_HOURS)


# =============================================================================
# Access tokens
# =============================================================================

def create_access_token(
    user_id: UUID,
    role: str,
    device_session_id: UUID,
    expires_delta: Optional[timedelta] = None,
) -> Tuple[str, str]:
    """
    Create a new JWT access token.

    Args:
        user_id: User's unique identifier
        role: User's role
        device_session_id: Device session the token is bound to
        expires_delta: Optional custom expiration time

    Returns:
        Tuple of (encoded JWT string, token ID)
    """
    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    token_id = secrets.token_hex(16)

    payload = {
        "sub": str(user_id),
        "role": role,
        "did": str(device_session_id),
        "jti": token_id,
        "typ": ACCESS_TOKEN_TYPE,
        "exp": expire,
        "iat": now,
    }

    encoded_jwt = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt, token_id


def verify_access_token(token: str) -> TokenPayload:
    """
    Verify and decode a JWT access token.

    Raises:
        InvalidTokenError: If token is invalid, expired, malformed or not an access token
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise InvalidTokenError(f"Token validation failed: {str(e)}")

    if payload.get("typ") != ACCESS_TOKEN_TYPE:
        raise InvalidTokenError("Token validation failed: wrong token type")
    try:
        return TokenPayload(**payload)
    except ValueError as e:
        raise InvalidTokenError(f"Token validation failed: {str(e)}")


def get_token_expiry_seconds() -> int:
    return settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60


# =============================================================================
# Two-factor challenge
# =============================================================================

def generate_two_factor_code() -> str:
    return f"{secrets.randbelow(10 ** TWO_FACTOR_CODE_LENGTH):0{TWO_FACTOR_CODE_LENGTH}d}"


def normalize_two_factor_code(code: str) -> Optional[str]:
    """
    Strip non-digits and keep the first 6 digits.

    Returns:
        The 6-digit code, or None if fewer than 6 digits were supplied
    """
    digits = re.sub(r"\D", "", code or "")[:TWO_FACTOR_CODE_LENGTH]
    if len(digits) != TWO_FACTOR_CODE_LENGTH:
        return None
    return digits


def hash_two_factor_code(challenge_id: UUID, code: str) -> str:
    return hash_token(f"{challenge_id}:{code}")


def two_factor_lifetime() -> timedelta:
    return timedelta(minutes=settings.TWO_FACTOR_EXPIRE_MINUTES)


def create_two_factor_token(user_id: UUID, challenge_id: UUID, expires_at: datetime) -> str:
    """Sign a challenge token that expires together with its challenge."""
    payload = {
        "sub": str(user_id),
        "cid": str(challenge_id),
        "typ": TWO_FACTOR_TOKEN_TYPE,
        "exp": expires_at,
        "iat": utcnow(),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_two_factor_token(token: str) -> TwoFactorTokenPayload:
    """
    Raises:
        InvalidTokenError: bad signature, expired, or not a 2FA token
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise InvalidTokenError(f"Challenge validation failed: {str(e)}")

    if payload.get("typ") != TWO_FACTOR_TOKEN_TYPE:
        raise InvalidTokenError("Challenge validation failed: wrong token type")
    try:
        return TwoFactorTokenPayload(**payload)
    except ValueError as e:
        raise InvalidTokenError(f"Challenge validation failed: {str(e)}")
