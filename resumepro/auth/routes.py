"""
ResumeCustomizer Pro - Authentication Routes

API endpoints for authentication:
- POST   /auth/register                - Create an unverified account
- POST   /auth/login                   - Authenticate (may require 2FA)
- POST   /auth/verify-2fa              - Complete a 2FA login
- POST   /auth/logout                  - End the session (never fails)
- POST   /auth/refresh                 - New access token from a refresh token
- POST   /auth/request-password-reset  - Email a reset link (alias /forgot-password)
- POST   /auth/reset-password          - Set a new password with a reset token
- GET    /auth/verify-email            - Consume an email verification token
- POST   /auth/resend-verification     - Send a fresh verification link
- POST   /auth/change-password         - Change password, sign out other devices
- POST   /auth/two-factor              - Enable or disable email 2FA
- GET    /auth/user                    - Current user (alias /me)
- GET    /auth/csrf                    - Current CSRF token
- GET    /auth/devices                 - Active devices of the current user
- DELETE /auth/devices/{id}            - Revoke one device
- POST   /auth/logout-all              - Revoke every other device

All credential operations are written to the login audit log.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status

from resumepro.auth import credentials, sessions, web_sessions
from resumepro.auth.dependencies import (
    AuthenticatedUser,
    get_client_ip,
    get_current_user,
    get_db,
    get_orchestrator,
    get_session_context,
    get_user_agent,
    require_permission,
)
from resumepro.auth.errors import NotAuthenticatedError, NotFoundError, RateLimitedError
from resumepro.auth.models import Role, role_at_least
from resumepro.auth.orchestrator import TwoFactorRequired, sanitize_user
from resumepro.auth.schemas import (
    MAX_REFRESH_TOKEN_LENGTH,
    ChangePasswordRequest,
    DeviceListResponse,
    DeviceSessionInfo,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TwoFactorToggleRequest,
    VerifyTwoFactorRequest,
)
from resumepro.auth.tokens import get_token_expiry_seconds
from resumepro.gateway.rate_limit import AuthRateLimiter, rate_limit_key
from resumepro.gateway.rbac import Permission
from resumepro.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

RESET_REQUESTED_MESSAGE = "If an account with that email exists, a password reset link has been sent."
VERIFICATION_RESENT_MESSAGE = "If an account with that email exists and is unverified, a verification email has been sent."


def _enforce_rate_limit(limiter: AuthRateLimiter, key: str) -> None:
    allowed, retry_after = limiter.hit(key)
    if not allowed:
        logger.warning("rate_limit_exceeded", key=key.split(":")[-1], retry_after=retry_after)
        raise RateLimitedError(retry_after)


# =============================================================================
# Registration and email verification
# =============================================================================

@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
)
async def register(request: Request, body: RegisterRequest):
    """
    Create an account in pending_verification state and email the
    verification link.

    Raises:
        400: Weak password or invalid fields
        409: Email already registered (generic wording)
    """
    _enforce_rate_limit(
        request.app.state.reset_limiter,
        rate_limit_key(get_client_ip(request), f"register:{body.email}"),
    )
    db = get_db(request)
    try:
        user = await get_orchestrator(request, db).register(
            body.email,
            body.password,
            body.pseudo_name,
            body.first_name,
            body.last_name,
        )
        return {
            "success": True,
            "message": "Registration successful. Please check your email to verify your account.",
            "userId": str(user.id),
        }
    finally:
        db.close()


@router.get("/verify-email", response_model=MessageResponse, summary="Verify email address")
async def verify_email(request: Request, token: str = ""):
    db = get_db(request)
    try:
        await get_orchestrator(request, db).verify_email(token)
        return MessageResponse(
            message="Email verified successfully. Your account is now pending admin approval."
        )
    finally:
        db.close()


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(request: Request, body: EmailRequest):
    _enforce_rate_limit(
        request.app.state.reset_limiter,
        rate_limit_key(get_client_ip(request), f"verify:{body.email}"),
    )
    db = get_db(request)
    try:
        await get_orchestrator(request, db).resend_verification(body.email)
        return MessageResponse(message=VERIFICATION_RESENT_MESSAGE)
    finally:
        db.close()


# =============================================================================
# Login, 2FA and logout
# =============================================================================

@router.post("/login", summary="Authenticate user and create session")
async def login(request: Request, response: Response, body: LoginRequest):
    """
    Authenticate user with email and password.

    On success without 2FA:
    1. Regenerates the cookie session (new sid, old one destroyed)
    2. Creates a device session bound to a new refresh token
    3. Issues a JWT access token bound to that device session

    Returns:
        {success, user, accessToken, refreshToken} or
        {success, requires2FA, tempToken}

    Raises:
        401: Invalid credentials (identical for unknown users)
        403: Locked, unverified or unapproved account
        429: Too many attempts
    """
    limiter = request.app.state.login_limiter
    key = rate_limit_key(get_client_ip(request), body.email)
    _enforce_rate_limit(limiter, key)

    db = get_db(request)
    try:
        result = await get_orchestrator(request, db).login(
            body.email, body.password, get_session_context(request)
        )
    finally:
        db.close()

    if isinstance(result, TwoFactorRequired):
        return {
            "success": True,
            "message": "Two-factor authentication required",
            "requires2FA": True,
            "tempToken": result.temp_token,
            "expiresIn": result.expires_in,
        }

    limiter.reset(key)
    web_sessions.set_session_cookies(response, result.session)
    return {
        "success": True,
        "user": result.user,
        "accessToken": result.access_token,
        "refreshToken": result.refresh_token,
        "expiresIn": result.expires_in,
    }


@router.post("/verify-2fa", summary="Complete login with the emailed code")
async def verify_two_factor(request: Request, response: Response, body: VerifyTwoFactorRequest):
    _enforce_rate_limit(
        request.app.state.login_limiter,
        rate_limit_key(get_client_ip(request), "2fa"),
    )
    db = get_db(request)
    try:
        result = await get_orchestrator(request, db).verify_two_factor(
            body.code, body.temp_token, get_session_context(request)
        )
    finally:
        db.close()

    web_sessions.set_session_cookies(response, result.session)
    return {
        "success": True,
        "user": result.user,
        "accessToken": result.access_token,
        "refreshToken": result.refresh_token,
        "expiresIn": result.expires_in,
    }


async def _read_logout_token(request: Request) -> Optional[str]:
    try:
        body = await request.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    token = body.get("refreshToken")
    if not isinstance(token, str) or not token or len(token) > MAX_REFRESH_TOKEN_LENGTH:
        return None
    return token


@router.post("/logout", response_model=MessageResponse, summary="End the current session")
async def logout(request: Request, response: Response):
    """
    Log out by refresh token or by cookie session.

    Always answers 200 and clears every auth cookie, even when there was
    nothing to log out. The body is optional; anything that is not a JSON
    object with a usable `refreshToken` counts as a session logout.
    """
    refresh_token = await _read_logout_token(request)
    db = get_db(request)
    try:
        await get_orchestrator(request, db).logout(get_session_context(request), refresh_token)
    except Exception as e:
        logger.error("logout_failed", error=str(e))
    finally:
        db.close()

    web_sessions.clear_auth_cookies(response)
    return MessageResponse(message="Logged out successfully")


@router.post("/refresh", summary="Exchange a refresh token for an access token")
async def refresh(request: Request, body: RefreshRequest):
    db = get_db(request)
    try:
        access_token = await get_orchestrator(request, db).refresh(body.refresh_token)
    finally:
        db.close()

    return {"success": True, "accessToken": access_token, "expiresIn": get_token_expiry_seconds()}


# =============================================================================
# Password management
# =============================================================================

@router.post("/request-password-reset", response_model=MessageResponse)
@router.post("/forgot-password", response_model=MessageResponse, include_in_schema=False)
async def request_password_reset(request: Request, body: EmailRequest):
    """Email a reset link. The answer never reveals whether the account exists."""
    _enforce_rate_limit(
        request.app.state.reset_limiter,
        rate_limit_key(get_client_ip(request), body.email),
    )
    db = get_db(request)
    try:
        await get_orchestrator(request, db).request_password_reset(body.email)
        return MessageResponse(message=RESET_REQUESTED_MESSAGE)
    finally:
        db.close()


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(request: Request, response: Response, body: ResetPasswordRequest):
    _enforce_rate_limit(
        request.app.state.reset_limiter,
        rate_limit_key(get_client_ip(request), "reset"),
    )
    db = get_db(request)
    try:
        await get_orchestrator(request, db).reset_password(body.token, body.new_password)
    finally:
        db.close()

    web_sessions.clear_auth_cookies(response)
    return MessageResponse(
        message="Password has been reset successfully. Please log in with your new password."
    )


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Change password; every other device and cookie session is signed out."""
    db = get_db(request)
    try:
        await get_orchestrator(request, db).change_password(
            user.user_id,
            body.current_password,
            body.new_password,
            keep_device_session_id=user.device_session_id,
            keep_web_session_id=user.web_session_id,
        )
        return MessageResponse(message="Password changed successfully")
    finally:
        db.close()


@router.post("/two-factor", summary="Enable or disable email two-factor authentication")
async def toggle_two_factor(
    request: Request,
    body: TwoFactorToggleRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    db = get_db(request)
    try:
        updated = await get_orchestrator(request, db).set_two_factor(
            user.user_id, body.enabled, body.password
        )
        return {
            "success": True,
            "message": "Two-factor authentication " + ("enabled" if body.enabled else "disabled"),
            "user": sanitize_user(updated),
        }
    finally:
        db.close()


# =============================================================================
# Current user and CSRF
# =============================================================================

@router.get("/user", summary="Get current user information")
@router.get("/me", include_in_schema=False)
async def get_me(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    db = get_db(request)
    try:
        db_user = await credentials.get_user(db, user.user_id)
        if db_user is None:
            raise NotAuthenticatedError()
        return sanitize_user(db_user)
    finally:
        db.close()


@router.get("/csrf", summary="Get the CSRF token of the current session")
async def get_csrf_token(request: Request, response: Response):
    """
    Return the session's CSRF token, creating an anonymous session (and
    its cookies) when the request has none.
    """
    session = get_session_context(request)
    if session is None:
        db = get_db(request)
        try:
            session = await web_sessions.create_web_session(
                db,
                ip_address=get_client_ip(request),
                user_agent=get_user_agent(request),
            )
        finally:
            db.close()
        request.state.web_session = session
        web_sessions.set_session_cookies(response, session)
    return {"csrfToken": session.csrf_token}


# =============================================================================
# Devices
# =============================================================================

@router.get("/devices", response_model=DeviceListResponse, summary="List active devices")
async def list_devices(
    request: Request,
    user: AuthenticatedUser = Depends(require_permission(Permission.MANAGE_OWN_SESSIONS)),
):
    db = get_db(request)
    try:
        devices = await sessions.list_device_sessions(db, user.user_id, active_only=True)
        items = [DeviceSessionInfo.from_device(d, user.device_session_id) for d in devices]
        return DeviceListResponse(sessions=items, total=len(items))
    finally:
        db.close()


@router.delete("/devices/{device_session_id}", response_model=MessageResponse)
async def revoke_device(
    request: Request,
    device_session_id: UUID,
    user: AuthenticatedUser = Depends(require_permission(Permission.MANAGE_OWN_SESSIONS)),
):
    """
    Revoke one device session. Owners may revoke their own devices; admins
    may revoke any. Other users' devices answer 404.
    """
    db = get_db(request)
    try:
        device = await sessions.get_device_session(db, device_session_id)
        if device is None or (
            device.user_id != user.user_id and not role_at_least(user.role, Role.ADMIN)
        ):
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")

        await get_orchestrator(request, db).revoke_device(device_session_id, user.user_id)
        return MessageResponse(message="Session revoked successfully")
    finally:
        db.close()


@router.post("/logout-all", summary="Sign out every other device")
async def logout_all(
    request: Request,
    user: AuthenticatedUser = Depends(require_permission(Permission.MANAGE_OWN_SESSIONS)),
):
    db = get_db(request)
    try:
        count = await get_orchestrator(request, db).logout_everywhere(
            user.user_id,
            keep_device_session_id=user.device_session_id,
            keep_web_session_id=user.web_session_id,
        )
        return {
            "success": True,
            "message": "Logged out from all other devices",
            "revokedCount": count,
        }
    finally:
        db.close()
