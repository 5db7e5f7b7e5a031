"""
ResumeCustomizer Pro - Auth API Client

Async httpx client for the auth endpoints, wired through ClientAuthGuard.

Error classes:
- NetworkError: transport failures and timeouts. Never treated as a logout
  and never counted by the breaker.
- UnauthorizedError: the server answered 401/403.
- ApiError: any other non-2xx answer.

Every request carries a timeout, so an in-flight "who am I" call always
ends in success, failure or timeout.
"""

from typing import Any, Dict, Optional

import httpx

from resumepro.client.guard import ClientAuthGuard
from resumepro.logging import get_logger

logger = get_logger(__name__)

CSRF_COOKIE_NAME = "csrf_token"
CSRF_HEADER_NAME = "X-CSRF-Token"


class ClientError(Exception):
    """Base class for client-side API failures."""


class NetworkError(ClientError):
    """Connection failure or timeout."""


class UnauthorizedError(ClientError):
    def __init__(self, status_code: int, body: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.body = body or {}
        super().__init__(self.body.get("message") or "Unauthorized")


class ApiError(ClientError):
    def __init__(self, status_code: int, body: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.body = body or {}
        super().__init__(self.body.get("message") or f"HTTP {status_code}")


def _json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"data": data}


class AuthClient:
    """
    Client for /api/auth.

    Usage:
        async with AuthClient(base_url, guard) as client:
            await client.login(email, password)
            user = await client.fetch_current_user()
    """

    def __init__(
        self,
        base_url: str,
        guard: ClientAuthGuard,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.guard = guard
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"X-Requested-With": "XMLHttpRequest"},
        )
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    async def __aenter__(self) -> "AuthClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        headers = {}
        csrf = self._client.cookies.get(CSRF_COOKIE_NAME)
        if csrf and method.upper() != "GET":
            headers[CSRF_HEADER_NAME] = csrf
        try:
            return await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("auth_request_timeout", path=path)
            raise NetworkError(f"Request timed out: {path}") from e
        except httpx.TransportError as e:
            logger.warning("auth_request_network_error", path=path, error=str(e))
            raise NetworkError(str(e) or f"Network error: {path}") from e

    def _raise_for_status(self, response: httpx.Response) -> Dict[str, Any]:
        body = _json(response)
        if response.status_code in (401, 403):
            raise UnauthorizedError(response.status_code, body)
        if response.status_code >= 400:
            raise ApiError(response.status_code, body)
        return body

    # =========================================================================
    # Operations
    # =========================================================================

    async def fetch_current_user(self) -> Optional[Dict[str, Any]]:
        """
        "Who am I". Returns the user, or None when unauthenticated.

        While the breaker is open this answers None without a request.

        Raises:
            NetworkError: Transport failure (the cached user is kept)
            ApiError: Server error (counted by the breaker)
        """
        if not self.guard.allow_request():
            return None

        state = self.guard.state
        state.in_flight = True
        try:
            response = await self._request("GET", "/api/auth/user")
        finally:
            state.in_flight = False

        if response.status_code in (401, 403):
            self.guard.record_unauthorized()
            return None
        if response.status_code >= 400:
            self.guard.record_error()
            raise ApiError(response.status_code, _json(response))

        user = _json(response)
        self.guard.record_success(user)
        return user

    async def fetch_csrf_token(self) -> str:
        response = await self._request("GET", "/api/auth/csrf")
        return self._raise_for_status(response)["csrfToken"]

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """
        Log in. Returns the response body; when it contains requires2FA,
        finish with verify_two_factor().
        """
        response = await self._request("POST", "/api/auth/login", {"email": email, "password": password})
        body = self._raise_for_status(response)
        if not body.get("requires2FA"):
            self._store_login(body)
        return body

    async def verify_two_factor(self, code: str, temp_token: str) -> Dict[str, Any]:
        response = await self._request(
            "POST", "/api/auth/verify-2fa", {"code": code, "tempToken": temp_token}
        )
        body = self._raise_for_status(response)
        self._store_login(body)
        return body

    def _store_login(self, body: Dict[str, Any]) -> None:
        self.access_token = body.get("accessToken")
        self.refresh_token = body.get("refreshToken")
        self.guard.mark_logged_in(body.get("user") or {})

    async def logout(self) -> None:
        """
        Log out on the server, then locally. The local logout (storage
        cleanup and broadcast) happens even if the server is unreachable.
        """
        payload = {"refreshToken": self.refresh_token} if self.refresh_token else None
        try:
            await self._request("POST", "/api/auth/logout", payload)
        except NetworkError as e:
            logger.warning("server_logout_failed", error=str(e))
        finally:
            self.access_token = None
            self.refresh_token = None
            self._client.cookies.clear()
            self.guard.logout()
