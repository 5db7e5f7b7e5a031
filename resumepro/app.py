"""
ResumeCustomizer Pro - FastAPI Application Entrypoint

This module initializes the FastAPI application with:
- CORS, security and cookie session middleware
- Authentication and admin routes under /api
- Database lifecycle management
- Structured error responses

Security: Every expected auth failure is rendered as
{"success": false, "message", "code", ...}; unexpected errors never leak
details to the client.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from resumepro.admin.routes import router as admin_router
from resumepro.auth.database import get_engine, get_session_factory, init_db
from resumepro.auth.errors import AuthError
from resumepro.auth.routes import router as auth_router
from resumepro.auth.sessions import cleanup_expired_sessions
from resumepro.auth.web_sessions import purge_expired_web_sessions
from resumepro.config import settings
from resumepro.gateway.middleware import SecurityMiddleware, SessionMiddleware
from resumepro.gateway.rate_limit import AuthRateLimiter
from resumepro.logging import get_logger
from resumepro.services.email import EmailService
from resumepro.services.geolocation import GeoLocationService

logger = get_logger(__name__)


async def _purge_expired_sessions(session_factory) -> None:
    """Revoke expired device sessions and drop expired cookie sessions."""
    db = session_factory()
    try:
        revoked = await cleanup_expired_sessions(db)
        purged = await purge_expired_web_sessions(db)
        logger.info("expired_sessions_purged", device_sessions=revoked, web_sessions=purged)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Initialize SQLModel database (users, sessions, audit log)
        - Build email, geolocation and rate limiting services
        - Warn when production runs on a generated SECRET_KEY
        - Purge expired device and cookie sessions

    Services already placed on app.state (tests) are kept as they are.

    Shutdown:
        - Dispose the database engine
    """
    engine = None
    if getattr(app.state, "db_session_factory", None) is None:
        engine = get_engine(settings.DATABASE_URL)
        init_db(engine)
        app.state.db_engine = engine
        app.state.db_session_factory = get_session_factory(engine)

    if getattr(app.state, "email_service", None) is None:
        app.state.email_service = EmailService.from_settings()
    if getattr(app.state, "geolocator", None) is None:
        app.state.geolocator = GeoLocationService.from_settings()
    if getattr(app.state, "login_limiter", None) is None:
        app.state.login_limiter = AuthRateLimiter.for_login()
    if getattr(app.state, "reset_limiter", None) is None:
        app.state.reset_limiter = AuthRateLimiter.for_password_reset()

    if settings.is_production and settings.secret_key_is_generated:
        logger.warning(
            "secret_key_not_configured",
            detail="tokens signed by this process are rejected by other workers and after restart",
        )

    await _purge_expired_sessions(app.state.db_session_factory)

    logger.info(
        "application_started",
        environment=settings.ENVIRONMENT,
        email_configured=app.state.email_service.is_configured,
    )

    yield

    if engine is not None:
        engine.dispose()
        app.state.db_session_factory = None


app = FastAPI(
    title=settings.APP_NAME,
    description="Authentication and session lifecycle for ResumeCustomizer Pro",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)


# =============================================================================
# Middleware (last added runs first)
# =============================================================================

app.add_middleware(SessionMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "PUT", "PATCH"],
    allow_headers=["Authorization", "Content-Type", settings.CSRF_HEADER_NAME],
)

app.add_middleware(SecurityMiddleware)


# =============================================================================
# Exception handlers
# =============================================================================

@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers or None)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Invalid request",
            "code": "VALIDATION_ERROR",
            "errors": errors,
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(
        "unhandled_error",
        method=request.method,
        path=request.url.path,
        error_type=type(exc).__name__,
    )
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error"},
    )


# =============================================================================
# Routes
# =============================================================================

app.include_router(auth_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


def _database_available() -> bool:
    factory = getattr(app.state, "db_session_factory", None)
    if factory is None:
        return False
    db = factory()
    try:
        db.connection()
        return True
    except Exception as e:
        logger.error("health_database_unavailable", error=str(e))
        return False
    finally:
        db.close()


@app.get("/health")
async def health_check():
    """Health check endpoint for deployment tooling."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "services": {
            "database": _database_available(),
            "email": app.state.email_service.is_configured,
        },
    }


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("resumepro.app:app", host=settings.HOST, port=settings.PORT)
