"""
ResumeCustomizer Pro - Security Dependencies

FastAPI dependencies answering "is this request authenticated, as which
user, with which role" for every router in the application.

Usage:
    @router.get("/protected")
    async def protected_route(user: AuthenticatedUser = Depends(get_current_user)):
        ...

    @router.get("/admin-only")
    async def admin_route(user: AuthenticatedUser = Depends(require_admin)):
        ...

Security:
- Accepts either the `sid` cookie session or a Bearer access token
- Both are rejected once their device session is revoked or expired
- Only approved accounts are treated as authenticated
"""

import json
from typing import Optional
from urllib.parse import unquote
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlmodel import Session as DBSession

from resumepro.auth.errors import NotAuthenticatedError, PermissionDeniedError
from resumepro.auth.models import ApprovalStatus, DeviceSession, Role, User, role_at_least
from resumepro.auth.orchestrator import AuthOrchestrator, RequestContext
from resumepro.auth.tokens import InvalidTokenError, verify_access_token
from resumepro.auth.web_sessions import SessionContext
from resumepro.gateway.rbac import Permission, RBACPolicy


# HTTP Bearer scheme for JWT extraction
security = HTTPBearer(auto_error=False)

_BEARER_HEADERS = {"WWW-Authenticate": "Bearer"}


class AuthenticatedUser(BaseModel):
    """
    Represents a validated, authenticated user.

    Available in route handlers via Depends(get_current_user).
    """
    user_id: UUID
    email: str
    role: Role
    device_session_id: Optional[UUID] = None
    web_session_id: Optional[UUID] = None
    token_id: Optional[str] = None
    method: str = "session"

    class Config:
        from_attributes = True


def get_db(request: Request) -> DBSession:
    """Get database session from app state."""
    return request.app.state.db_session_factory()


def get_client_ip(request: Request) -> str:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> str:
    """Extract user agent from request."""
    return request.headers.get("User-Agent", "unknown")[:512]


def get_session_context(request: Request) -> Optional[SessionContext]:
    """Cookie session loaded by SessionMiddleware, if any."""
    return getattr(request.state, "web_session", None)


def get_request_context(request: Request) -> RequestContext:
    """Network and marketing-attribution metadata for audit entries."""
    tracking = {}
    referrer = request.headers.get("Referer")
    if referrer:
        tracking["referrer"] = referrer[:512]

    utm_cookie = request.cookies.get("utm_params")
    if utm_cookie:
        try:
            utm = json.loads(unquote(utm_cookie))
        except ValueError:
            utm = None
        if isinstance(utm, dict):
            tracking["utm"] = {str(k)[:64]: str(v)[:256] for k, v in utm.items()}

    return RequestContext(
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        tracking=tracking,
    )


def get_orchestrator(request: Request, db: DBSession) -> AuthOrchestrator:
    """Build an orchestrator wired to the services on app state."""
    return AuthOrchestrator(
        db,
        get_request_context(request),
        email_service=request.app.state.email_service,
        geolocator=request.app.state.geolocator,
    )


def _device_is_live(db: DBSession, device_session_id: Optional[UUID], user_id: UUID) -> bool:
    device = db.get(DeviceSession, device_session_id) if device_session_id else None
    return device is not None and device.user_id == user_id and device.is_active


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """
    Validate request authentication and return current user.

    Bearer token path:
        1. Validate JWT signature, expiry and type
        2. Check the device session named by the token is still live
    Cookie path:
        1. Use the session loaded by SessionMiddleware
        2. Check its device session is still live

    Raises:
        NotAuthenticatedError (401)
    """
    db = get_db(request)
    try:
        if credentials:
            try:
                payload = verify_access_token(credentials.credentials)
                user_id = UUID(payload.sub)
                device_session_id = UUID(payload.did)
            except (InvalidTokenError, ValueError):
                raise NotAuthenticatedError(
                    "Invalid or expired token", code="INVALID_TOKEN", headers=_BEARER_HEADERS
                )
            if not _device_is_live(db, device_session_id, user_id):
                raise NotAuthenticatedError(
                    "Session has been revoked", code="SESSION_REVOKED", headers=_BEARER_HEADERS
                )
            web_session_id = None
            token_id = payload.jti
            method = "token"
        else:
            session = get_session_context(request)
            if session is None or session.user_id is None:
                raise NotAuthenticatedError()
            user_id = session.user_id
            device_session_id = session.device_session_id
            if device_session_id is not None and not _device_is_live(db, device_session_id, user_id):
                raise NotAuthenticatedError("Session has been revoked", code="SESSION_REVOKED")
            web_session_id = session.id
            token_id = None
            method = "session"

        user = db.get(User, user_id)
        if user is None or user.approval_status != ApprovalStatus.APPROVED:
            raise NotAuthenticatedError()

        return AuthenticatedUser(
            user_id=user.id,
            email=user.email,
            role=user.role,
            device_session_id=device_session_id,
            web_session_id=web_session_id,
            token_id=token_id,
            method=method,
        )
    finally:
        db.close()


def require_role(role: Role):
    """
    Dependency factory requiring `role` or a higher one.

    Usage:
        @router.get("/marketing")
        async def marketing(user: AuthenticatedUser = Depends(require_role(Role.MARKETING))):
            ...
    """
    async def dependency(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
        if not role_at_least(user.role, role):
            raise PermissionDeniedError(f"Requires role: {role.value}")
        return user

    return dependency


def require_permission(permission: Permission):
    """Dependency factory enforcing a policies.yaml permission."""
    async def dependency(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
        if not RBACPolicy().has_permission(user.role.value, permission):
            raise PermissionDeniedError(f"Permission denied: {permission.value}")
        return user

    return dependency


require_admin = require_role(Role.ADMIN)
