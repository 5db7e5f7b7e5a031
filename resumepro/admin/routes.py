"""
ResumeCustomizer Pro - Admin API Routes

Admin-only endpoints for account and session management:
- Device session listing and revocation per user
- Force logout
- Login history and suspicious-login review
- Registration approval queue
- Audit chain verification

All routes require the ADMIN role.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from resumepro.audit import login_log
from resumepro.audit.models import ChainVerificationResult, LoginHistoryItem
from resumepro.auth import credentials, sessions
from resumepro.auth.dependencies import (
    AuthenticatedUser,
    get_db,
    get_orchestrator,
    require_admin,
    require_permission,
)
from resumepro.auth.errors import NotFoundError, ValidationFailedError
from resumepro.auth.models import ApprovalStatus
from resumepro.auth.orchestrator import sanitize_user
from resumepro.auth.schemas import (
    DeviceListResponse,
    DeviceSessionInfo,
    MessageResponse,
    RejectUserRequest,
)
from resumepro.gateway.rbac import Permission
from resumepro.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# Request/Response Models
# =============================================================================

class LoginHistoryResponse(BaseModel):
    user_id: UUID
    history: List[LoginHistoryItem]
    count: int


class SuspiciousLoginsResponse(BaseModel):
    """Paginated suspicious logins."""
    logins: List[LoginHistoryItem]
    total: int
    page: int
    page_size: int
    total_pages: int


class PendingApprovalsResponse(BaseModel):
    users: List[Dict[str, Any]]
    total: int


async def _get_user_or_404(db, user_id: UUID):
    user = await credentials.get_user(db, user_id)
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


def _notify(action: str, send, *args) -> None:
    try:
        send(*args)
    except Exception as e:
        logger.error("notification_failed", action=action, error=str(e))


# =============================================================================
# Sessions
# =============================================================================

@router.get("/users/{user_id}/active-sessions", response_model=DeviceListResponse)
async def get_active_sessions(
    request: Request,
    user_id: UUID,
    admin: AuthenticatedUser = Depends(require_permission(Permission.MANAGE_SESSIONS)),
):
    """List a user's active (non-revoked, unexpired) device sessions."""
    db = get_db(request)
    try:
        await _get_user_or_404(db, user_id)
        devices = await sessions.list_device_sessions(db, user_id, active_only=True)
        items = [DeviceSessionInfo.from_device(d) for d in devices]
        return DeviceListResponse(sessions=items, total=len(items))
    finally:
        db.close()


@router.post("/users/{user_id}/revoke-session/{session_id}", response_model=MessageResponse)
async def revoke_user_session(
    request: Request,
    user_id: UUID,
    session_id: UUID,
    admin: AuthenticatedUser = Depends(require_permission(Permission.MANAGE_SESSIONS)),
):
    db = get_db(request)
    try:
        device = await sessions.get_device_session(db, session_id)
        if device is None or device.user_id != user_id:
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")

        await get_orchestrator(request, db).revoke_device(session_id, admin.user_id)
        logger.info("admin_session_revoked", admin_id=str(admin.user_id), session_id=str(session_id))
        return MessageResponse(message="Session revoked successfully")
    finally:
        db.close()


@router.post("/users/{user_id}/force-logout")
async def force_logout(
    request: Request,
    user_id: UUID,
    admin: AuthenticatedUser = Depends(require_permission(Permission.MANAGE_SESSIONS)),
):
    """
    Revoke every device and cookie session of a user.

    Admins cannot force-logout themselves (use /auth/logout-all).
    """
    if user_id == admin.user_id:
        raise ValidationFailedError(
            "You cannot force logout yourself", code="SELF_LOGOUT_PREVENTED"
        )

    db = get_db(request)
    try:
        await _get_user_or_404(db, user_id)
        count = await get_orchestrator(request, db).logout_everywhere(user_id, forced_by=admin.user_id)
        logger.info("admin_force_logout", admin_id=str(admin.user_id), user_id=str(user_id), sessions=count)
        return {
            "success": True,
            "message": f"User logged out from {count} device(s)",
            "revokedCount": count,
        }
    finally:
        db.close()


# =============================================================================
# Login history
# =============================================================================

@router.get("/users/{user_id}/login-history", response_model=LoginHistoryResponse)
async def get_login_history(
    request: Request,
    user_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: AuthenticatedUser = Depends(require_permission(Permission.READ_AUDIT)),
):
    db = get_db(request)
    try:
        await _get_user_or_404(db, user_id)
        entries = await login_log.login_history(db, user_id, limit=limit, offset=offset)
        history = [LoginHistoryItem.model_validate(e) for e in entries]
        return LoginHistoryResponse(user_id=user_id, history=history, count=len(history))
    finally:
        db.close()


@router.get("/suspicious-logins", response_model=SuspiciousLoginsResponse)
async def get_suspicious_logins(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    days: Optional[int] = Query(None, ge=1, le=365),
    admin: AuthenticatedUser = Depends(require_permission(Permission.READ_AUDIT)),
):
    """Suspicious logins across all users, newest first."""
    db = get_db(request)
    try:
        entries, total = await login_log.suspicious_logins(db, page=page, page_size=page_size, days=days)
        return SuspiciousLoginsResponse(
            logins=[LoginHistoryItem.model_validate(e) for e in entries],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=(total + page_size - 1) // page_size,
        )
    finally:
        db.close()


@router.get("/audit/verify", response_model=ChainVerificationResult)
async def verify_audit_chain(
    request: Request,
    admin: AuthenticatedUser = Depends(require_permission(Permission.READ_AUDIT)),
):
    """Recompute the login audit hash chain and report the first broken link."""
    db = get_db(request)
    try:
        result = await login_log.verify_audit_chain(db)
        if not result.is_valid:
            logger.critical("audit_chain_broken", broken_at=result.broken_at)
        return result
    finally:
        db.close()


# =============================================================================
# Approvals
# =============================================================================

@router.get("/pending-approvals", response_model=PendingApprovalsResponse)
async def get_pending_approvals(
    request: Request,
    admin: AuthenticatedUser = Depends(require_admin),
):
    db = get_db(request)
    try:
        users = await credentials.list_pending_approvals(db)
        return PendingApprovalsResponse(users=[sanitize_user(u) for u in users], total=len(users))
    finally:
        db.close()


@router.post("/users/{user_id}/approve")
async def approve_user(
    request: Request,
    user_id: UUID,
    admin: AuthenticatedUser = Depends(require_permission(Permission.MANAGE_USERS)),
):
    db = get_db(request)
    try:
        user = await _get_user_or_404(db, user_id)
        if user.approval_status != ApprovalStatus.PENDING_APPROVAL:
            raise ValidationFailedError("User is not pending approval", code="NOT_PENDING_APPROVAL")

        user = await credentials.set_approval(db, user, ApprovalStatus.APPROVED, admin.user_id)
        _notify("account_approved", request.app.state.email_service.send_account_approved, user.email)
        logger.info("user_approved", admin_id=str(admin.user_id), user_id=str(user.id))
        return {"success": True, "message": "User approved successfully", "user": sanitize_user(user)}
    finally:
        db.close()


@router.post("/users/{user_id}/reject")
async def reject_user(
    request: Request,
    user_id: UUID,
    body: Optional[RejectUserRequest] = None,
    admin: AuthenticatedUser = Depends(require_permission(Permission.MANAGE_USERS)),
):
    db = get_db(request)
    try:
        user = await _get_user_or_404(db, user_id)
        if user.approval_status != ApprovalStatus.PENDING_APPROVAL:
            raise ValidationFailedError("User is not pending approval", code="NOT_PENDING_APPROVAL")

        reason = body.reason if body else None
        user = await credentials.set_approval(db, user, ApprovalStatus.REJECTED, admin.user_id, reason)
        _notify(
            "account_rejected",
            request.app.state.email_service.send_account_rejected,
            user.email,
            reason,
        )
        logger.info("user_rejected", admin_id=str(admin.user_id), user_id=str(user.id))
        return {"success": True, "message": "User rejected", "user": sanitize_user(user)}
    finally:
        db.close()
