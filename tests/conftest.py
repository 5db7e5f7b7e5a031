"""
ResumeCustomizer Pro - Test Configuration

Pytest fixtures for authentication testing.
Provides test database, client, email capture and user fixtures.
"""

import os

# Cheap hashing and no outbound lookups in tests
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("GEOLOCATION_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")

import re
from datetime import datetime
from typing import Generator, List, Optional, Tuple
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from resumepro.app import app
from resumepro.auth.database import get_session_factory, init_db
from resumepro.auth.models import ApprovalStatus, Role, User
from resumepro.auth.password import hash_password
from resumepro.gateway.rate_limit import AuthRateLimiter
from resumepro.services.email import EmailService
from resumepro.services.geolocation import GeoLocationService


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

USER_PASSWORD = "UserPass123!"
ADMIN_PASSWORD = "AdminPass123!"


class RecordingEmailService(EmailService):
    """EmailService that keeps every message instead of sending it."""

    def __init__(self):
        super().__init__(admin_email="admin-inbox@test.com")
        self.messages: List[Tuple[str, str, str]] = []

    def _send_email(self, to_email: str, subject: str, text_body: str) -> bool:
        self.messages.append((to_email, subject, text_body))
        return True

    def to(self, email: str) -> List[Tuple[str, str, str]]:
        return [m for m in self.messages if m[0] == email]

    def last_token(self, email: str) -> Optional[str]:
        """Token from the newest link mailed to `email`."""
        for _, _, body in reversed(self.to(email)):
            match = re.search(r"token=([A-Za-z0-9_\-]+)", body)
            if match:
                return match.group(1)
        return None

    def last_code(self, email: str) -> Optional[str]:
        """Six-digit code from the newest 2FA email to `email`."""
        for _, _, body in reversed(self.to(email)):
            match = re.search(r"verification code is (\d{6})", body)
            if match:
                return match.group(1)
        return None


@pytest.fixture(scope="function")
def test_engine():
    """Create a fresh test database engine for each test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    init_db(engine)

    yield engine

    # Cleanup
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session for testing."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(scope="function")
def email_service() -> RecordingEmailService:
    return RecordingEmailService()


@pytest.fixture(scope="function")
def client(test_engine, email_service) -> Generator[TestClient, None, None]:
    """Create a test client with fresh database and services."""
    # Configure app to use test database
    app.state.db_engine = test_engine
    app.state.db_session_factory = get_session_factory(test_engine)

    # Disable external services
    app.state.email_service = email_service
    app.state.geolocator = GeoLocationService(enabled=False)

    # Fresh limiters so attempts never leak between tests
    app.state.login_limiter = AuthRateLimiter.for_login()
    app.state.reset_limiter = AuthRateLimiter.for_password_reset()

    with TestClient(app) as c:
        yield c


def _make_user(
    db_session: Session,
    email: str,
    password: str,
    role: Role = Role.STANDARD,
    email_verified: bool = True,
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED,
    two_factor_enabled: bool = False,
) -> User:
    now = datetime.utcnow()
    user = User(
        id=uuid4(),
        email=email,
        password_hash=hash_password(password),
        pseudo_name=email.split("@")[0],
        role=role,
        email_verified=email_verified,
        approval_status=approval_status,
        two_factor_enabled=two_factor_enabled,
        created_at=now,
        updated_at=now,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def test_user(db_session) -> User:
    """Create an approved standard user."""
    return _make_user(db_session, "user@test.com", USER_PASSWORD)


@pytest.fixture(scope="function")
def other_user(db_session) -> User:
    """Create a second approved standard user."""
    return _make_user(db_session, "other@test.com", USER_PASSWORD)


@pytest.fixture(scope="function")
def test_admin(db_session) -> User:
    """Create an approved admin user."""
    return _make_user(db_session, "admin@test.com", ADMIN_PASSWORD, role=Role.ADMIN)


@pytest.fixture(scope="function")
def unverified_user(db_session) -> User:
    """Create a user who has not verified their email."""
    return _make_user(
        db_session,
        "unverified@test.com",
        USER_PASSWORD,
        email_verified=False,
        approval_status=ApprovalStatus.PENDING_VERIFICATION,
    )


@pytest.fixture(scope="function")
def pending_user(db_session) -> User:
    """Create a verified user awaiting admin approval."""
    return _make_user(
        db_session,
        "pending@test.com",
        USER_PASSWORD,
        approval_status=ApprovalStatus.PENDING_APPROVAL,
    )


@pytest.fixture(scope="function")
def two_factor_user(db_session) -> User:
    """Create an approved user with email 2FA enabled."""
    return _make_user(db_session, "twofactor@test.com", USER_PASSWORD, two_factor_enabled=True)


def login_user(client: TestClient, email: str, password: str, user_agent: Optional[str] = None) -> dict:
    """Helper function to login and return the response body."""
    headers = {"User-Agent": user_agent} if user_agent else None
    response = client.post(
        "/api/auth/login",
        json={"email": email, "password": password},
        headers=headers,
    )
    return response.json() if response.status_code == 200 else None


def auth_headers(access_token: str) -> dict:
    """Create authorization headers for token-authenticated requests."""
    return {"Authorization": f"Bearer {access_token}"}


def csrf_headers(client: TestClient) -> dict:
    """Headers for a cookie-session request that changes state."""
    return {"X-CSRF-Token": client.cookies.get("csrf_token")}


def reload_user(db_session: Session, user: User) -> User:
    """Re-read a user after the API changed it."""
    db_session.expire_all()
    return db_session.get(User, user.id)
