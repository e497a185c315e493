"""
api/main.py -- FastAPI application entry point for the LearnHub auth service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces default and per-route rate limits from api.limiter

Lifespan builds the process-wide handles (user store, Redis-backed cache,
OTP store, token blacklist, AuthService) once at startup and closes them at
shutdown. Route handlers reach them through app.state.

Error responses all use the same envelope as successes:
  {"success": false, "message": "...", "errors": [...]}
"""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ApiResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError, ValidationFailedError
from auth.service import AuthService
from auth.store import UserStore
from cache.blacklist import TokenBlacklist
from cache.otp import OTPStore
from cache.store import CacheGateway
from core.config import get_settings

_VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("learnhub.api")


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the AuthService is built last because it takes
    every other handle as a constructor argument.
    """
    logger.info("LearnHub auth API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    logger.info("User store initialized")
    app.state.cache = CacheGateway.from_url(_settings.redis_url, default_ttl=_settings.cache_default_ttl_seconds)
    if app.state.cache.ping():
        logger.info("Cache initialized")
    else:
        logger.warning("Cache unavailable -- OTP flows and token blacklist degrade to cache misses")
    app.state.auth_service = AuthService(
        store=app.state.user_store,
        otp_store=OTPStore(app.state.cache, ttl=_settings.otp_ttl_seconds),
        blacklist=TokenBlacklist(app.state.cache, ttl=_settings.token_blacklist_ttl_seconds),
        settings=_settings,
    )

    yield

    app.state.cache.close()
    app.state.user_store.close()
    logger.info("LearnHub auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="LearnHub Auth API",
    description="Registration, login, sessions, OTP verification and password reset.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
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
        _client_ip(request),
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _error_response(status_code: int, message: str, errors: list | None = None, stack: list | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse(success=False, message=message, errors=errors, stack=stack).model_dump(exclude_none=True),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Operational errors: the message is safe to show to the client."""
    logger.warning(
        "%d - %s - %s %s - %s",
        exc.status_code,
        exc.message,
        request.method,
        request.url.path,
        _client_ip(request),
    )
    return _error_response(exc.status_code, exc.message, exc.errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one {field, message} item per failing field."""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return await auth_error_handler(request, ValidationFailedError(errors=errors))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("429 - rate limited - %s %s - %s", request.method, request.url.path, _client_ip(request))
    response = _error_response(429, "Too many requests, please try again later.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return _error_response(404, "Route not found")
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback is always logged server-side. It is only echoed to the
    client when DEBUG=true; production clients get a generic message.
    """
    logger.exception("Unhandled exception on %s %s - %s", request.method, request.url.path, _client_ip(request))
    stack = traceback.format_exception(exc) if _settings.debug else None
    return _error_response(500, "Something went wrong!", stack=stack)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable. Exempt from rate
# limiting -- load balancer checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
@limiter.exempt
def health(request: Request) -> JSONResponse:
    """Report liveness plus database and cache reachability.

    503 when the database is down. A cache outage is reported but does not
    fail the check: every cache-backed feature degrades to a miss.
    """
    db_ok = request.app.state.user_store.ping()
    cache_ok = request.app.state.cache.ping()
    body = HealthResponse(
        status="healthy" if db_ok else "unhealthy",
        version=_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        components={
            "app": "ok",
            "database": "ok" if db_ok else "error",
            "cache": "ok" if cache_ok else "error",
        },
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
