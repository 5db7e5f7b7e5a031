"""
ResumeCustomizer Pro - Transactional Email

SMTP dispatch for verification links, reset links, 2FA codes and account
notifications. When SMTP is not configured (development) messages are
logged instead of sent.

Every send reports success as a bool; callers treat notifications as
best-effort.
"""

from __future__ import annotations

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from resumepro.config import settings
from resumepro.logging import get_logger

logger = get_logger(__name__)


def redact_email(email: str) -> str:
    """Redact an email address for logging."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """Email service for sending auth-related emails."""

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "ResumeCustomizer Pro",
        base_url: Optional[str] = None,
        admin_email: Optional[str] = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = (base_url or "http://localhost:5000").rstrip("/")
        self.admin_email = admin_email

    @classmethod
    def from_settings(cls) -> "EmailService":
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            smtp_use_tls=settings.SMTP_USE_TLS,
            from_email=settings.EMAIL_FROM,
            base_url=settings.APP_URL,
            admin_email=settings.ADMIN_EMAIL,
        )

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return bool(self.smtp_host and self.from_email)

    def _send_email(self, to_email: str, subject: str, text_body: str) -> bool:
        """
        Send an email via SMTP.

        Returns True if sent (or logged in dev mode), False otherwise.
        """
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=redact_email(to_email),
                subject=subject,
                body_preview=text_body[:200],
            )
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))

        try:
            context = ssl.create_default_context()
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error("email_auth_failed", host=self.smtp_host, user=self.smtp_user, error=str(e))
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error("email_recipient_refused", to=redact_email(to_email), error=str(e))
            return False
        except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
            logger.error(
                "email_send_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        logger.info("email_sent", to=redact_email(to_email), subject=subject)
        return True

    def _send_to_admin(self, subject: str, text_body: str) -> bool:
        if not self.admin_email:
            logger.info("admin_email_not_configured", subject=subject)
            return False
        return self._send_email(self.admin_email, subject, text_body)

    # =========================================================================
    # Account emails
    # =========================================================================

    def send_verification_email(self, to_email: str, token: str) -> bool:
        url = f"{self.base_url}/verify-email?token={token}"
        return self._send_email(
            to_email,
            "Verify your ResumeCustomizer Pro account",
            f"Welcome! Confirm your email address by opening:\n\n{url}\n\n"
            "This link expires in 24 hours.",
        )

    def send_password_reset_email(self, to_email: str, token: str) -> bool:
        url = f"{self.base_url}/reset-password?token={token}"
        return self._send_email(
            to_email,
            "Reset your ResumeCustomizer Pro password",
            f"We received a request to reset your password. Choose a new one here:\n\n{url}\n\n"
            "This link expires in 1 hour. If you didn't request this, ignore this email.",
        )

    def send_two_factor_code(self, to_email: str, code: str) -> bool:
        return self._send_email(
            to_email,
            "Your ResumeCustomizer Pro verification code",
            f"Your verification code is {code}\n\nIt expires in "
            f"{settings.TWO_FACTOR_EXPIRE_MINUTES} minutes.",
        )

    def send_approval_pending(self, to_email: str) -> bool:
        return self._send_email(
            to_email,
            "Your account is awaiting approval",
            "Thanks for verifying your email. An administrator will review your account shortly.",
        )

    def send_account_approved(self, to_email: str) -> bool:
        return self._send_email(
            to_email,
            "Your account has been approved",
            f"Your account is active. Sign in at {self.base_url}/login",
        )

    def send_account_rejected(self, to_email: str, reason: Optional[str] = None) -> bool:
        body = "Your account registration was not approved."
        if reason:
            body += f"\n\nReason: {reason}"
        return self._send_email(to_email, "Your account registration", body)

    def send_new_device_notification(
        self,
        to_email: str,
        ip_address: Optional[str],
        location: str,
        device: str,
    ) -> bool:
        return self._send_email(
            to_email,
            "New sign-in to your account",
            f"Your account was just used from a new device.\n\nDevice: {device}\n"
            f"Location: {location}\nIP address: {ip_address or 'unknown'}\n\n"
            "If this wasn't you, reset your password immediately.",
        )

    # =========================================================================
    # Admin emails
    # =========================================================================

    def send_admin_approval_request(self, user_email: str, display_name: Optional[str]) -> bool:
        return self._send_to_admin(
            "New user awaiting approval",
            f"{display_name or user_email} ({user_email}) verified their email and is awaiting approval.",
        )

    def send_suspicious_login_alert(
        self,
        user_email: str,
        reasons: List[str],
        ip_address: Optional[str],
        location: str,
        device: str,
    ) -> bool:
        lines = "\n".join(f"- {reason}" for reason in reasons)
        return self._send_to_admin(
            "Suspicious login detected",
            f"Suspicious login for {user_email}\n\n{lines}\n\nIP: {ip_address or 'unknown'}\n"
            f"Location: {location}\nDevice: {device}",
        )
