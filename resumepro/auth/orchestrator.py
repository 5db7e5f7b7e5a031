"""
ResumeCustomizer Pro - Authentication Orchestrator

The login / 2FA / logout / reset state machine. Routes translate HTTP to
calls on AuthOrchestrator; every expected failure leaves as an AuthError.

Login branch order:
    1. unknown user or wrong password  -> 401 Invalid credentials
       (a wrong password also bumps the lockout counter)
    2. account locked                  -> 403 ACCOUNT_LOCKED
       (checked before the password outcome is revealed)
    3. email not verified              -> 403 requiresVerification
    4. approval status not approved    -> 403 PENDING_APPROVAL / ACCOUNT_REJECTED / PENDING_VERIFICATION
    5. 2FA enabled                     -> 200 requires2FA + tempToken, no session yet
    6. establish session (see establish_session)

Security:
- Unknown users pay for one bcrypt check so both 401 paths cost the same
- 2FA challenges are deleted on use; a second use of the same code fails
- The device session, lockout reset and new cookie session commit together
- Audit writes, device bookkeeping on logout and emails are best-effort
"""

import hmac
from typing import Any, Dict, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field
from sqlalchemy import delete
from sqlmodel import Session as DBSession, select

from resumepro.audit import login_log
from resumepro.audit.models import AuditEventType, AuditStatus
from resumepro.auth import credentials, sessions, web_sessions
from resumepro.auth.devices import DeviceInfo, parse_user_agent
from resumepro.auth.errors import (
    AccountLockedError,
    ApprovalRequiredError,
    ConflictError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    NotAuthenticatedError,
    NotFoundError,
    TokenRejectedError,
    ValidationFailedError,
)
from resumepro.auth.models import ApprovalStatus, TwoFactorChallenge, User, WebSession, utcnow
from resumepro.auth.password import (
    burn_verification,
    hash_password,
    needs_rehash,
    password_strength_errors,
    sanitize_password_input,
    verify_password,
)
from resumepro.auth.suspicious import SuspiciousActivityDetector
from resumepro.auth.tokens import (
    InvalidTokenError,
    create_access_token,
    create_expiring_token,
    create_refresh_token,
    create_two_factor_token,
    email_verification_lifetime,
    generate_two_factor_code,
    get_token_expiry_seconds,
    hash_token,
    hash_two_factor_code,
    normalize_two_factor_code,
    password_reset_lifetime,
    two_factor_lifetime,
    verify_two_factor_token,
)
from resumepro.auth.web_sessions import SessionContext
from resumepro.logging import get_logger
from resumepro.services.email import EmailService
from resumepro.services.geolocation import GeoLocation, GeoLocationService

logger = get_logger(__name__)

INVALID_CODE_MESSAGE = "Invalid or expired verification code"
INVALID_CHALLENGE_MESSAGE = "Invalid or expired verification request"
INVALID_RESET_MESSAGE = "Invalid or expired password reset token"
INVALID_VERIFICATION_MESSAGE = "Invalid or expired verification token"

_APPROVAL_ERRORS = {
    ApprovalStatus.PENDING_APPROVAL: (
        "PENDING_APPROVAL",
        "Your account is pending admin approval. You will receive an email once approved.",
    ),
    ApprovalStatus.REJECTED: (
        "ACCOUNT_REJECTED",
        "Your account registration was not approved. Please contact support.",
    ),
}


class RequestContext(BaseModel):
    """Who is calling: network and tracking metadata of the request."""
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    tracking: Dict[str, Any] = Field(default_factory=dict)


class LoginResult(BaseModel):
    """Outcome of a completed login (with or without 2FA)."""
    user: Dict[str, Any]
    access_token: str
    refresh_token: str
    expires_in: int
    device_session_id: UUID
    session: SessionContext


class TwoFactorRequired(BaseModel):
    temp_token: str
    expires_in: int


def sanitize_user(user: User) -> Dict[str, Any]:
    """Public view of a user (never includes hashes or tokens)."""
    return {
        "id": str(user.id),
        "email": user.email,
        "pseudoName": user.pseudo_name,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role.value,
        "emailVerified": user.email_verified,
        "approvalStatus": user.approval_status.value,
        "twoFactorEnabled": user.two_factor_enabled,
        "lastLoginAt": user.last_login_at.isoformat() if user.last_login_at else None,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


class AuthOrchestrator:
    """
    Sequences credentials, tokens, device sessions, detection and audit
    for a single request.

    Usage:
        orchestrator = AuthOrchestrator(db, context, email_service, geolocator)
        result = await orchestrator.login(email, password, current_session)
    """

    def __init__(
        self,
        db: DBSession,
        context: RequestContext,
        email_service: EmailService,
        geolocator: GeoLocationService,
        detector: Optional[SuspiciousActivityDetector] = None,
    ):
        self.db = db
        self.context = context
        self.email_service = email_service
        self.geolocator = geolocator
        self.detector = detector or SuspiciousActivityDetector(email_service)
        self._device: Optional[DeviceInfo] = None

    @property
    def device(self) -> DeviceInfo:
        if self._device is None:
            self._device = parse_user_agent(self.context.user_agent)
        return self._device

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _audit(
        self,
        event_type: AuditEventType,
        status: AuditStatus,
        user_id: Optional[UUID] = None,
        reason: Optional[str] = None,
        geo: Optional[GeoLocation] = None,
        **extra: Any,
    ) -> None:
        tracking = dict(self.context.tracking)
        tracking.update(extra.pop("tracking", {}) or {})
        await login_log.record_event(
            self.db,
            event_type,
            status,
            user_id=user_id,
            reason=reason,
            ip_address=self.context.ip_address,
            user_agent=self.context.user_agent,
            device=self.device,
            geo=geo,
            tracking=tracking,
            **extra,
        )

    def _notify(self, action: str, send, *args, **kwargs) -> None:
        """Run an email send; failures are logged and swallowed."""
        try:
            send(*args, **kwargs)
        except Exception as e:
            logger.error("notification_failed", action=action, error=str(e))

    def _check_password_strength(self, password: str) -> None:
        errors = password_strength_errors(password)
        if errors:
            raise ValidationFailedError(errors[0], code="WEAK_PASSWORD", extra={"errors": errors})

    def _check_account_state(self, user: User) -> None:
        """Steps 2-4 of the login branch order."""
        if user.is_locked:
            raise AccountLockedError()
        if not user.email_verified:
            raise EmailNotVerifiedError(
                extra={"requiresVerification": True, "userId": str(user.id)}
            )
        if user.approval_status != ApprovalStatus.APPROVED:
            code, message = _APPROVAL_ERRORS.get(
                user.approval_status,
                ("PENDING_VERIFICATION", "Please verify your email address to continue."),
            )
            raise ApprovalRequiredError(message, code=code)

    # =========================================================================
    # Login
    # =========================================================================

    async def login(
        self,
        email: str,
        password: str,
        current_session: Optional[SessionContext] = None,
    ) -> Union[LoginResult, TwoFactorRequired]:
        """
        Authenticate with email and password.

        Returns:
            LoginResult, or TwoFactorRequired when the account uses 2FA

        Raises:
            InvalidCredentialsError, AccountLockedError, EmailNotVerifiedError,
            ApprovalRequiredError
        """
        user = await credentials.get_user_by_email(self.db, email)

        if user is None:
            burn_verification(password)
            await self._audit(AuditEventType.LOGIN, AuditStatus.FAILURE, reason="invalid_credentials")
            raise InvalidCredentialsError()

        if user.is_locked:
            burn_verification(password)
            await self._audit(AuditEventType.LOGIN, AuditStatus.FAILURE, user.id, reason="account_locked")
            raise AccountLockedError()

        if not verify_password(password, user.password_hash):
            await credentials.record_failed_login(self.db, user.id)
            await self._audit(AuditEventType.LOGIN, AuditStatus.FAILURE, user.id, reason="invalid_credentials")
            raise InvalidCredentialsError()

        try:
            self._check_account_state(user)
        except (EmailNotVerifiedError, ApprovalRequiredError) as e:
            await self._audit(AuditEventType.LOGIN, AuditStatus.FAILURE, user.id, reason=e.code.lower())
            raise

        if needs_rehash(user.password_hash):
            user.password_hash = hash_password(password)
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)

        if user.two_factor_enabled:
            return await self._issue_two_factor_challenge(user)

        return await self.establish_session(user, current_session)

    async def _issue_two_factor_challenge(self, user: User) -> TwoFactorRequired:
        now = utcnow()
        expired = self.db.exec(
            select(TwoFactorChallenge).where(
                TwoFactorChallenge.user_id == user.id,
                TwoFactorChallenge.expires_at <= now,
            )
        ).all()
        for stale in expired:
            self.db.delete(stale)

        challenge_id = uuid4()
        code = generate_two_factor_code()
        expires_at = now + two_factor_lifetime()
        challenge = TwoFactorChallenge(
            id=challenge_id,
            user_id=user.id,
            code_hash=hash_two_factor_code(challenge_id, code),
            issued_at=now,
            expires_at=expires_at,
        )
        self.db.add(challenge)
        self.db.commit()

        self._notify("two_factor_code", self.email_service.send_two_factor_code, user.email, code)
        logger.info("two_factor_challenge_issued", user_id=str(user.id), challenge_id=str(challenge_id))

        return TwoFactorRequired(
            temp_token=create_two_factor_token(user.id, challenge_id, expires_at),
            expires_in=int(two_factor_lifetime().total_seconds()),
        )

    async def verify_two_factor(
        self,
        code: str,
        temp_token: str,
        current_session: Optional[SessionContext] = None,
    ) -> LoginResult:
        """
        Complete a login with the emailed code.

        A wrong code leaves the challenge usable until it expires; a
        correct code deletes it before the session is established.
        """
        normalized = normalize_two_factor_code(code)
        if normalized is None:
            raise ValidationFailedError("Verification code must be 6 digits", code="INVALID_CODE_FORMAT")

        try:
            payload = verify_two_factor_token(temp_token or "")
            user_id = UUID(payload.sub)
            challenge_id = UUID(payload.cid)
        except (InvalidTokenError, ValueError):
            raise TokenRejectedError(INVALID_CHALLENGE_MESSAGE)

        challenge = self.db.get(TwoFactorChallenge, challenge_id)
        if challenge is None or challenge.user_id != user_id or challenge.expires_at <= utcnow():
            raise TokenRejectedError(INVALID_CODE_MESSAGE)

        if not hmac.compare_digest(challenge.code_hash, hash_two_factor_code(challenge_id, normalized)):
            await self._audit(
                AuditEventType.TWO_FACTOR_VERIFY, AuditStatus.FAILURE, user_id, reason="invalid_code"
            )
            raise TokenRejectedError(INVALID_CODE_MESSAGE)

        result = self.db.execute(
            delete(TwoFactorChallenge).where(TwoFactorChallenge.id == challenge_id)
        )
        self.db.commit()
        if result.rowcount != 1:
            raise TokenRejectedError(INVALID_CODE_MESSAGE)

        user = await credentials.get_user(self.db, user_id)
        if user is None:
            raise TokenRejectedError(INVALID_CHALLENGE_MESSAGE)
        self._check_account_state(user)

        await self._audit(AuditEventType.TWO_FACTOR_VERIFY, AuditStatus.SUCCESS, user.id)
        return await self.establish_session(user, current_session)

    async def establish_session(
        self,
        user: User,
        current_session: Optional[SessionContext] = None,
    ) -> LoginResult:
        """
        Step 6 of login, in order:
        new session id -> fingerprint + geolocate -> detect -> audit ->
        notify -> tokens + device session -> reset lockout / last-login ->
        persist the cookie session.

        The device session, the lockout reset and the swap of the old
        cookie session for the new one are committed together by the
        final step. If that fails nothing of it is kept, a login failure
        is audited and the error propagates.
        """
        user_id = user.id
        ip_address = self.context.ip_address
        user_agent = self.context.user_agent
        device = self.device

        raw_sid, session_row = web_sessions.regenerate_session_id(user_id, ip_address, user_agent)

        geo = await self.geolocator.lookup(ip_address)
        analysis = await self.detector.analyze(self.db, user_id, ip_address, geo, device)

        await self._audit(
            AuditEventType.LOGIN,
            AuditStatus.SUCCESS,
            user_id,
            geo=geo,
            is_suspicious=analysis.is_suspicious,
            suspicious_reasons=analysis.reasons,
            is_new_location=analysis.is_new_location,
            is_new_device=analysis.is_new_device,
        )

        if analysis.is_suspicious:
            await self.detector.alert_admin(user, analysis, ip_address, geo, device)
        if analysis.is_new_device:
            await self.detector.notify_user(user, ip_address, geo, device)

        try:
            refresh_token, refresh_hash = create_refresh_token()
            device_session = await sessions.create_device_session(
                self.db,
                user_id,
                refresh_hash,
                ip_address=ip_address,
                user_agent=user_agent,
                device=device,
            )
            device_session_id = device_session.id
            access_token, token_id = create_access_token(user_id, user.role.value, device_session_id)

            await credentials.record_successful_login(self.db, user, ip_address, user_agent, geo, device)

            new_session = await web_sessions.persist_login_session(
                self.db, current_session, raw_sid, session_row, device_session_id
            )
        except Exception as e:
            self.db.rollback()
            logger.error("login_session_persist_failed", user_id=str(user_id), error=str(e))
            await self._audit(
                AuditEventType.LOGIN, AuditStatus.FAILURE, user_id, reason="session_persist_failed", geo=geo
            )
            raise

        logger.info(
            "login_succeeded",
            user_id=str(user_id),
            device_session_id=str(device_session_id),
            token_id=token_id,
            suspicious=analysis.is_suspicious,
        )

        return LoginResult(
            user=sanitize_user(user),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=get_token_expiry_seconds(),
            device_session_id=device_session_id,
            session=new_session,
        )

    # =========================================================================
    # Tokens and logout
    # =========================================================================

    async def refresh(self, refresh_token: str) -> str:
        """
        Exchange a refresh token for a new access token.

        Raises:
            NotAuthenticatedError: Unknown, expired or revoked refresh token
        """
        device_session = await sessions.find_active_by_token_hash(self.db, hash_token(refresh_token or ""))
        if device_session is None:
            raise NotAuthenticatedError("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN")

        user = await credentials.get_user(self.db, device_session.user_id)
        if user is None or user.approval_status != ApprovalStatus.APPROVED or user.is_locked:
            raise NotAuthenticatedError("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN")

        await sessions.touch_device_session(self.db, device_session)
        access_token, _ = create_access_token(user.id, user.role.value, device_session.id)
        await self._audit(AuditEventType.TOKEN_REFRESH, AuditStatus.SUCCESS, user.id)
        return access_token

    async def logout(
        self,
        current_session: Optional[SessionContext] = None,
        refresh_token: Optional[str] = None,
    ) -> None:
        """
        Log out by refresh token (token-based) or by cookie session.

        Never raises for the caller: unknown tokens and missing sessions
        are successful no-ops, bookkeeping failures are logged.
        """
        if refresh_token:
            await self._logout_token(refresh_token)
        elif current_session is not None and current_session.user_id is not None:
            await self._logout_session(current_session)

        if current_session is not None:
            try:
                await web_sessions.destroy_web_session(self.db, current_session.id)
            except Exception as e:
                self.db.rollback()
                logger.error("web_session_destroy_failed", error=str(e))

    async def _logout_session(self, current_session: SessionContext) -> None:
        user_id = current_session.user_id
        try:
            if current_session.device_session_id:
                await sessions.revoke_device_session(self.db, current_session.device_session_id)
            await sessions.revoke_matching_sessions(
                self.db, user_id, self.context.user_agent, self.context.ip_address
            )
        except Exception as e:
            self.db.rollback()
            logger.error("device_session_revoke_failed", user_id=str(user_id), error=str(e))

        await self._audit(
            AuditEventType.LOGOUT, AuditStatus.SUCCESS, user_id, tracking={"method": "session"}
        )

    async def _logout_token(self, refresh_token: str) -> None:
        device_session = None
        try:
            device_session = await sessions.revoke_by_token_hash(self.db, hash_token(refresh_token))
        except Exception as e:
            self.db.rollback()
            logger.error("device_session_revoke_failed", error=str(e))

        if device_session is not None:
            await self._audit(
                AuditEventType.LOGOUT,
                AuditStatus.SUCCESS,
                device_session.user_id,
                tracking={"method": "token"},
            )

    async def logout_everywhere(
        self,
        user_id: UUID,
        keep_device_session_id: Optional[UUID] = None,
        keep_web_session_id: Optional[UUID] = None,
        forced_by: Optional[UUID] = None,
    ) -> int:
        """
        Revoke all device sessions and cookie sessions of a user.

        Returns:
            Number of device sessions revoked
        """
        count = await sessions.revoke_all_user_sessions(self.db, user_id, keep_device_session_id)
        await web_sessions.destroy_user_web_sessions(self.db, user_id, keep_web_session_id)

        if forced_by is not None:
            await self._audit(
                AuditEventType.FORCE_LOGOUT,
                AuditStatus.SUCCESS,
                user_id,
                tracking={"admin_id": str(forced_by), "sessions_revoked": count},
            )
        else:
            await self._audit(
                AuditEventType.LOGOUT,
                AuditStatus.SUCCESS,
                user_id,
                tracking={"method": "all", "sessions_revoked": count},
            )
        return count

    async def revoke_device(self, device_session_id: UUID, actor_id: UUID) -> bool:
        """Revoke one device session and any cookie session riding on it."""
        device_session = await sessions.get_device_session(self.db, device_session_id)
        if device_session is None:
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")

        revoked = await sessions.revoke_device_session(self.db, device_session_id)
        rows = self.db.exec(
            select(WebSession).where(
                WebSession.device_session_id == device_session_id
            )
        ).all()
        for row in rows:
            self.db.delete(row)
        self.db.commit()

        await self._audit(
            AuditEventType.SESSION_REVOKED,
            AuditStatus.SUCCESS,
            device_session.user_id,
            tracking={"device_session_id": str(device_session_id), "revoked_by": str(actor_id)},
        )
        return revoked

    # =========================================================================
    # Registration and email verification
    # =========================================================================

    async def register(
        self,
        email: str,
        password: str,
        pseudo_name: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        """
        Create an unverified account and email the verification link.

        Raises:
            ValidationFailedError: Weak password
            ConflictError: Email already registered (generic wording)
        """
        password = sanitize_password_input(password)
        self._check_password_strength(password)

        password_hash = hash_password(password)
        if await credentials.get_user_by_email(self.db, email) is not None:
            await self._audit(AuditEventType.REGISTER, AuditStatus.FAILURE, reason="duplicate")
            raise ConflictError()

        raw_token, token_hash, expires_at = create_expiring_token(email_verification_lifetime())
        user = await credentials.create_user(
            self.db,
            email=email,
            password_hash=password_hash,
            pseudo_name=pseudo_name,
            first_name=first_name,
            last_name=last_name,
            verification_token_hash=token_hash,
            verification_expires=expires_at,
        )

        self._notify("verification_email", self.email_service.send_verification_email, user.email, raw_token)
        await self._audit(AuditEventType.REGISTER, AuditStatus.SUCCESS, user.id)
        logger.info("user_registered", user_id=str(user.id))
        return user

    async def verify_email(self, token: str) -> User:
        """
        Consume an email verification token.

        The account moves to pending_approval; the admin and user are told.
        """
        token_hash = hash_token(token or "")
        user = await credentials.find_user_by_verification_token(self.db, token_hash)
        if user is None or not await credentials.consume_verification_token(self.db, user.id, token_hash):
            raise TokenRejectedError(INVALID_VERIFICATION_MESSAGE)

        self.db.refresh(user)
        await self._audit(AuditEventType.EMAIL_VERIFY, AuditStatus.SUCCESS, user.id)

        if user.approval_status == ApprovalStatus.PENDING_APPROVAL:
            self._notify(
                "admin_approval_request",
                self.email_service.send_admin_approval_request,
                user.email,
                user.pseudo_name,
            )
            self._notify("approval_pending", self.email_service.send_approval_pending, user.email)
        return user

    async def resend_verification(self, email: str) -> None:
        """Issue a fresh verification link if the account exists and is unverified."""
        user = await credentials.get_user_by_email(self.db, email)
        if user is None or user.email_verified:
            return

        raw_token, token_hash, expires_at = create_expiring_token(email_verification_lifetime())
        await credentials.store_verification_token(self.db, user, token_hash, expires_at)
        self._notify("verification_email", self.email_service.send_verification_email, user.email, raw_token)

    # =========================================================================
    # Passwords and 2FA settings
    # =========================================================================

    async def request_password_reset(self, email: str) -> None:
        """Email a reset link if the account exists (caller answers generically)."""
        user = await credentials.get_user_by_email(self.db, email)
        if user is None:
            return

        raw_token, token_hash, expires_at = create_expiring_token(password_reset_lifetime())
        await credentials.store_reset_token(self.db, user, token_hash, expires_at)
        self._notify("password_reset_email", self.email_service.send_password_reset_email, user.email, raw_token)
        await self._audit(AuditEventType.PASSWORD_RESET_REQUEST, AuditStatus.SUCCESS, user.id)

    async def reset_password(self, token: str, new_password: str) -> None:
        """
        Set a new password with a reset token.

        Clears the lockout and signs the user out of every device.
        """
        new_password = sanitize_password_input(new_password)
        self._check_password_strength(new_password)

        token_hash = hash_token(token or "")
        user = await credentials.find_user_by_reset_token(self.db, token_hash)
        if user is None:
            raise TokenRejectedError(INVALID_RESET_MESSAGE)

        if not await credentials.consume_reset_token(
            self.db, user.id, token_hash, hash_password(new_password)
        ):
            raise TokenRejectedError(INVALID_RESET_MESSAGE)

        await sessions.revoke_all_user_sessions(self.db, user.id)
        await web_sessions.destroy_user_web_sessions(self.db, user.id)
        await self._audit(AuditEventType.PASSWORD_RESET, AuditStatus.SUCCESS, user.id)

    async def change_password(
        self,
        user_id: UUID,
        current_password: str,
        new_password: str,
        keep_device_session_id: Optional[UUID] = None,
        keep_web_session_id: Optional[UUID] = None,
    ) -> None:
        """Change password and revoke every other session of the user."""
        user = await credentials.get_user(self.db, user_id)
        if user is None:
            raise NotAuthenticatedError()

        if not verify_password(current_password, user.password_hash):
            await self._audit(
                AuditEventType.PASSWORD_CHANGE, AuditStatus.FAILURE, user.id, reason="invalid_current_password"
            )
            raise InvalidCredentialsError("Current password is incorrect", code="INVALID_CURRENT_PASSWORD")

        new_password = sanitize_password_input(new_password)
        self._check_password_strength(new_password)

        await credentials.set_password(self.db, user, hash_password(new_password))
        await sessions.revoke_all_user_sessions(self.db, user.id, keep_device_session_id)
        await web_sessions.destroy_user_web_sessions(self.db, user.id, keep_web_session_id)
        await self._audit(AuditEventType.PASSWORD_CHANGE, AuditStatus.SUCCESS, user.id)

    async def set_two_factor(self, user_id: UUID, enabled: bool, password: str) -> User:
        """Enable or disable email 2FA after re-checking the password."""
        user = await credentials.get_user(self.db, user_id)
        if user is None:
            raise NotAuthenticatedError()
        if not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("Password is incorrect", code="INVALID_CURRENT_PASSWORD")

        user.two_factor_enabled = enabled
        user.updated_at = utcnow()
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)

        await self._audit(
            AuditEventType.TWO_FACTOR_CHANGE,
            AuditStatus.SUCCESS,
            user.id,
            tracking={"enabled": enabled},
        )
        return user
