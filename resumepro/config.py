"""
ResumeCustomizer Pro - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and connection strings are loaded from environment variables.

Security: No secrets are hardcoded. Use .env for local development.
"""

import secrets
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        ENVIRONMENT: "production" enables secure cookies and strict same-site
        SECRET_KEY: JWT signing key (random per process when unset)
        TOKEN_HASH_KEY: HMAC key for stored token hashes (falls back to SECRET_KEY)
        DATABASE_URL: SQLAlchemy URL for users, device sessions and the audit log
        SMTP_HOST: Outgoing mail server; emails are only logged when unset
        ADMIN_EMAIL: Recipient of approval and suspicious-login alerts
        GEOLOCATION_ENABLED: Look up public IPs against the geolocation API
    """

    APP_NAME: str = "ResumeCustomizer Pro"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    APP_URL: str = "http://localhost:5000"
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    # Security
    SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(48))
    TOKEN_HASH_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_HOURS: int = 24
    TWO_FACTOR_EXPIRE_MINUTES: int = 10
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    BCRYPT_ROUNDS: int = 12

    # Account lockout
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 15

    # Cookie session
    SESSION_COOKIE_NAME: str = "sid"
    SESSION_MAX_AGE_SECONDS: int = 3600
    CSRF_COOKIE_NAME: str = "csrf_token"
    CSRF_HEADER_NAME: str = "X-CSRF-Token"

    # Rate limiting (per email + IP)
    LOGIN_RATE_LIMIT: int = 10
    LOGIN_RATE_WINDOW_SECONDS: int = 900
    RESET_RATE_LIMIT: int = 5
    RESET_RATE_WINDOW_SECONDS: int = 3600

    # Email
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: Optional[str] = None
    ADMIN_EMAIL: Optional[str] = None

    # Geolocation
    GEOLOCATION_ENABLED: bool = True
    GEOLOCATION_URL: str = "http://ip-api.com/json"
    GEOLOCATION_TIMEOUT_SECONDS: float = 5.0
    GEOLOCATION_CACHE_HOURS: int = 24

    # Database (PostgreSQL for production, SQLite for development)
    DATABASE_URL: str = "sqlite:///./resumepro.db"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:5000"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def secret_key_is_generated(self) -> bool:
        """True when SECRET_KEY was not configured and a per-process key is in use."""
        return "SECRET_KEY" not in self.model_fields_set

    @property
    def token_hash_key(self) -> str:
        return self.TOKEN_HASH_KEY or self.SECRET_KEY


settings = Settings()
