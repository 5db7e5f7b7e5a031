"""
ResumeCustomizer Pro - Password Hashing Utilities

Password hashing using bcrypt with a configurable work factor
(BCRYPT_ROUNDS, default 12) plus the password strength policy.

Security:
- Never log or expose plaintext passwords
- bcrypt includes salt automatically
- Unknown accounts are checked against a dummy hash so both failure
  paths cost one bcrypt verification
- Supports hash upgrades on login
"""

import re
from functools import lru_cache
from typing import List

import bcrypt

from resumepro.config import settings


SPECIAL_CHARACTERS = "@$!%*?&"
MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Example:
        >>> hashed = hash_password("SecureP@ss123")
        >>> hashed.startswith("$2b$")
        True
    """
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    Returns False for malformed hashes instead of raising.
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("dummy-password-for-timing")


def burn_verification(plain_password: str) -> None:
    """Run one bcrypt check against a throwaway hash (unknown-user path)."""
    verify_password(plain_password, _dummy_hash())


def needs_rehash(hashed_password: str, target_work_factor: int = None) -> bool:
    """
    Check if a password hash was made with a lower work factor.

    bcrypt hash format: $2b$XX$... where XX is the work factor.
    """
    target = target_work_factor or settings.BCRYPT_ROUNDS
    try:
        _, work_factor_str, _ = hashed_password.split("$")[1:4]
        return int(work_factor_str) < target
    except (ValueError, IndexError):
        return True


def sanitize_password_input(value: str) -> str:
    """Strip CR/LF/tab characters and surrounding whitespace."""
    return re.sub(r"[\r\n\t]", "", value or "").strip()


def password_strength_errors(password: str) -> List[str]:
    """
    Check a candidate password against the strength policy.

    Returns:
        List of unmet requirements (empty when acceptable)
    """
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one digit")
    if not any(ch in SPECIAL_CHARACTERS for ch in password):
        errors.append(f"Password must contain at least one special character ({SPECIAL_CHARACTERS})")
    return errors
