"""
ResumeCustomizer Pro - Gateway Middleware

Request/response middleware for:
- Request ID injection for tracing (also the log correlation id)
- Security headers
- Cookie session loading
- CSRF double-submit enforcement

Security:
- The CSRF check only applies to state-changing /api requests that carry
  a valid session cookie and no Authorization header
- Public auth endpoints are exempt so they never fail on a stale cookie
"""

import hmac
import time
import uuid
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from resumepro.auth import web_sessions
from resumepro.auth.errors import CsrfError
from resumepro.auth.web_sessions import SessionContext
from resumepro.config import settings
from resumepro.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

CSRF_EXEMPT_PATHS = frozenset({
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/verify-2fa",
    "/api/auth/logout",
    "/api/auth/refresh",
    "/api/auth/request-password-reset",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
    "/api/auth/verify-email",
    "/api/auth/resend-verification",
    "/api/auth/csrf",
})


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Security-focused middleware for all incoming requests.

    Responsibilities:
    1. Inject X-Request-ID header and bind it as the log correlation id
    2. Add security headers to response
    3. Log request timing
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_correlation_id(request_id)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Resolve the `sid` cookie into request.state.web_session.

    The session row's rolling expiry is extended on every request, and the
    cookies are re-sent unless the handler already set or cleared them.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        session = await self._load(request)
        request.state.web_session = session

        if session is not None and self._requires_csrf(request):
            header = request.headers.get(settings.CSRF_HEADER_NAME, "")
            if not hmac.compare_digest(header.encode(), session.csrf_token.encode()):
                logger.warning("csrf_rejected", path=request.url.path, method=request.method)
                error = CsrfError()
                return JSONResponse(status_code=error.status_code, content=error.to_body())

        response = await call_next(request)

        if session is not None and not self._cookie_was_set(response):
            web_sessions.set_session_cookies(response, session)
        return response

    async def _load(self, request: Request) -> Optional[SessionContext]:
        raw_sid = request.cookies.get(settings.SESSION_COOKIE_NAME)
        if not raw_sid:
            return None

        db = request.app.state.db_session_factory()
        try:
            return await web_sessions.load_web_session(db, raw_sid)
        except Exception as e:
            db.rollback()
            logger.error("web_session_load_failed", error=str(e))
            return None
        finally:
            db.close()

    def _requires_csrf(self, request: Request) -> bool:
        if request.method not in UNSAFE_METHODS:
            return False
        path = request.url.path.rstrip("/")
        if not path.startswith("/api/") or path in CSRF_EXEMPT_PATHS:
            return False
        # Bearer clients are not cookie-authenticated
        return "authorization" not in request.headers

    def _cookie_was_set(self, response: Response) -> bool:
        prefix = f"{settings.SESSION_COOKIE_NAME}="
        return any(
            value.startswith(prefix) for value in response.headers.getlist("set-cookie")
        )
