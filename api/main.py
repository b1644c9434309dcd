"""
api/main.py -- FastAPI application entry point for the card API.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware, in registration order (Starlette runs the last registered outermost):
  TrustedHostMiddleware -- Host header must be in Settings.allowed_hosts
  CORSMiddleware        -- browser origins from Settings.cors_origins
  SlowAPIMiddleware     -- the login rate limit declared in api.limiter

Lifespan builds the access-control objects once, with explicit dependencies,
and parks them on app.state:
  user_store     -- UserStore (SQLAlchemy)
  auth_service   -- AuthService(user_store, PasswordHasher, TokenIssuer, secret_key)
  gate           -- RequestGate(auth_service, header_name)
  image_resolver -- ImageResolver(image_dir)
Shutdown disposes the store's engine.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.cards import router as cards_router
from auth.dependencies import RequestGate
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings
from core.errors import (
    AccessControlError,
    MalformedIdentifierError,
    ResourceNotFoundError,
    StoreUnavailableError,
)
from core.resolver import ImageResolver

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("wotapi.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("Card API starting up")
    app.state.user_store = UserStore(settings.database_url)
    app.state.auth_service = AuthService.from_settings(app.state.user_store, settings)
    app.state.gate = RequestGate(app.state.auth_service, header_name=settings.auth_header)
    app.state.image_resolver = ImageResolver(settings.image_dir)
    logger.info(
        "Auth initialized (token lifetime %ds, bcrypt rounds %d); images at %s",
        settings.token_lifetime_seconds,
        settings.bcrypt_rounds,
        app.state.image_resolver.root,
    )
    if not app.state.user_store.has_users():
        logger.warning("No users exist -- create one with: python main.py create-user <username>")

    yield

    app.state.user_store.close()
    logger.info("Card API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Wheel of Time CCG API",
    description="Card catalog for The Wheel of Time Collectable Card Game.",
    version=VERSION,
    lifespan=lifespan,
    # No public schema browsing -- the API is for authenticated clients.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each new middleware around the previous ones, so a request
# meets log_requests, SlowAPI, CORS, then TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", _settings.auth_header],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])
app.include_router(cards_router, tags=["Cards"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is an ErrorResponse envelope: {"error": {code, message, detail}}.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(MalformedIdentifierError)
async def malformed_identifier_handler(request: Request, exc: MalformedIdentifierError) -> JSONResponse:
    """400 -- the card id would have changed the directory structure."""
    return _error(400, exc.code, exc.message)


@app.exception_handler(ResourceNotFoundError)
async def resource_not_found_handler(request: Request, exc: ResourceNotFoundError) -> JSONResponse:
    return _error(404, exc.code, exc.message)


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    return _error(503, exc.code, exc.message)


@app.exception_handler(AccessControlError)
async def access_control_handler(request: Request, exc: AccessControlError) -> JSONResponse:
    """Any other access-control failure is a plain 401 with no reason attached."""
    logger.info("Access denied on %s %s: %s", request.method, request.url.path, exc.code)
    return _error(401, "unauthorized", "Authentication required.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict (the gate raises those), use it
    directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Registered on the app, not on the gated cards router, so it needs no session.
# ---------------------------------------------------------------------------


@app.get("/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database status."""
    try:
        db_status = "ok" if request.app.state.user_store.ping() else "error"
    except Exception:
        logger.warning("Health check: database ping failed", exc_info=True)
        db_status = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": db_status})
