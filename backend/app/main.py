"""RentCheck API - FastAPI Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.database import engine, Base
from app.middleware.error_capture import ErrorCaptureMiddleware
from app.api import credit_checks, users
from app.services.credit_check import get_configured_bureau

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup (dev only); in prod use Alembic migrations."""
    if settings.environment == "development":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Development schema ready")
    if not settings.has_live_verifier:
        logger.info("Equifax credentials missing; credit checks will be simulated")
    yield


app = FastAPI(
    title="RentCheck API",
    description="Tenant credit checks for the rental portal",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = credit_checks.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ── Security headers middleware ──────────────────────────────────
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.environment not in ("development", "test"):
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        return response


# Error capture
app.add_middleware(ErrorCaptureMiddleware)

app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Webhook-Secret"],
)

# Routers
app.include_router(credit_checks.router, prefix="/api", tags=["Credit Checks"])
app.include_router(users.router, prefix="/api/users", tags=["Tenants"])


@app.get("/api/health")
async def health_check():
    bureau = get_configured_bureau()
    return {
        "status": "healthy",
        "service": "rentcheck-api",
        "version": "0.1.0",
        "bureau": {
            "provider": bureau.provider_name,
            "reachable": await bureau.check_health(),
        },
    }
