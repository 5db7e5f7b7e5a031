"""
ResumeCustomizer Pro - Client Auth Guard

Client-side resilience layer for the auth API: a circuit breaker that
stops auth loops, redirect throttling, post-login landing resolution,
an idle watchdog and cross-tab logout broadcast.

Usage:
    guard = ClientAuthGuard(storage=MemoryStorage())
    async with AuthClient("http://localhost:5000", guard) as client:
        user = await client.fetch_current_user()
"""

from resumepro.client.api import ApiError, AuthClient, ClientError, NetworkError, UnauthorizedError
from resumepro.client.broadcast import BroadcastHub, LogoutBroadcaster
from resumepro.client.guard import (
    ClientAuthGuard,
    RedirectDecision,
    resolve_post_login_path,
    should_redirect,
)
from resumepro.client.idle import IdleWatchdog
from resumepro.client.state import AuthEventKind, AuthStatus, ClientAuthState
from resumepro.client.storage import KeyValueStorage, MemoryStorage

__all__ = [
    "ApiError",
    "AuthClient",
    "AuthEventKind",
    "AuthStatus",
    "BroadcastHub",
    "ClientAuthGuard",
    "ClientAuthState",
    "ClientError",
    "IdleWatchdog",
    "KeyValueStorage",
    "LogoutBroadcaster",
    "MemoryStorage",
    "NetworkError",
    "RedirectDecision",
    "UnauthorizedError",
    "resolve_post_login_path",
    "should_redirect",
]
