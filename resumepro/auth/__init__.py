"""
ResumeCustomizer Pro - Authentication Package

Production-grade authentication with:
- Cookie sessions + JWT access tokens bound to device sessions
- bcrypt password hashing with account lockout
- Email two-factor challenges
- Role hierarchy (standard < marketing < admin)
"""

from resumepro.auth.models import ApprovalStatus, DeviceSession, Role, User
from resumepro.auth.tokens import create_access_token, verify_access_token

__all__ = [
    "ApprovalStatus",
    "DeviceSession",
    "Role",
    "User",
    "create_access_token",
    "verify_access_token",
]
