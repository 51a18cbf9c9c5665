"""
FastAPI application entry point.
Sets up the API with lifespan events for secrets, database and OAuth setup.
"""
import logging
import secrets
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.middleware.sessions import SessionMiddleware

from sukusuku.config import settings
from sukusuku.database import AsyncSessionLocal, init_db
from sukusuku.api.integrations import link_router
from sukusuku.api.router import api_router
from sukusuku.auth.google import initialize_google_oauth
from sukusuku.middleware.metrics_middleware import MetricsMiddleware
from sukusuku.repositories.token_repository import TokenRepository
from sukusuku.utils.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.
    - Startup: Check signing secrets, initialize database, sweep expired
      tokens, register the Google OAuth client
    """
    # Configure structured JSON logging
    configure_logging('sukusuku-api', settings.log_level, settings.environment)

    missing = settings.missing_secrets()
    if missing:
        raise RuntimeError(f"Missing required secrets: {', '.join(missing)}")

    # Startup
    await init_db()

    async with AsyncSessionLocal() as db:
        removed = await TokenRepository(db).delete_expired()
        if removed:
            logger.info(f"Removed {removed} expired auth tokens")

    # Google login is optional, routes answer 503 without it
    initialize_google_oauth()

    yield


# Create FastAPI app
app = FastAPI(
    title="SukuSuku API",
    description="Backend API for the SukuSuku.ai site and credit dashboard",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware (credentialed requests from the web client)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_url] if settings.client_url else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Session cookie for Google sign-in and the admin flag.
# The lifespan refuses to start without SESSION_SECRET, the random key only
# covers imports outside a running server.
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret or secrets.token_urlsafe(32),
    session_cookie="sukusuku_session",
    max_age=7 * 24 * 60 * 60,
    same_site="lax",
    https_only=settings.is_production,
)

# Metrics middleware (added last so it wraps every request)
app.add_middleware(MetricsMiddleware)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400 carrying the field errors."""
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors())},
    )


app.add_exception_handler(RequestValidationError, validation_error_handler)

# Include API routes
app.include_router(api_router, prefix="/api")
app.include_router(link_router, tags=["integrations"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "SukuSuku API",
        "version": "0.1.0",
        "environment": settings.environment
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
