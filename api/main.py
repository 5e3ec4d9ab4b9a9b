"""
api/main.py -- FastAPI application entry point for the Atomic Systems API.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers and answers preflight requests
  3. SlowAPIMiddleware     -- enforces the default and per-route rate limits

Lifespan handles startup (stores, auth service, token purge task) and
shutdown (cancel purge task, dispose engines) symmetrically.

Every error leaves through the exception handlers below as the same envelope:
{"success": false, "error": <message>, "code": <CODE>, "details"?: ...}.
"""

from __future__ import annotations

import asyncio
import logging
import time
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
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ApiResponse, DbHealthResponse, ErrorResponse, FieldError, HealthResponse
from api.routes.v1.atomic_systems import router as systems_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.identity_areas import router as areas_router
from api.routes.v1.identity_goals import router as goals_router
from auth.service import AuthService
from auth.store import UserStore
from core.config import APP_NAME, APP_VERSION, get_settings
from core.errors import AppError
from habits.store import HabitStore

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("atomic.api")

_STARTED = time.monotonic()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired refresh tokens every TOKEN_PURGE_INTERVAL_SECONDS.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly. A failed purge is logged
    and retried on the next tick.
    """
    while True:
        await asyncio.sleep(settings.token_purge_interval_seconds)
        try:
            await asyncio.to_thread(app.state.auth_service.purge_expired_tokens)
        except Exception:
            logger.exception("Refresh token purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the auth service wraps the user store, and the
    purge task references the auth service.
    """
    logger.info("%s API starting up (%s)", APP_NAME, settings.environment)
    app.state.user_store = UserStore(settings.database_url)
    app.state.auth_service = AuthService(app.state.user_store)
    app.state.habit_store = HabitStore(settings.database_url)
    logger.info("Stores initialized")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.habit_store.close()
    app.state.user_store.close()
    logger.info("%s API shutdown complete", APP_NAME)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title=f"{APP_NAME} API",
    description="Identity-based habit tracking: identity areas, atomic systems, executions and goals.",
    version=APP_VERSION,
    lifespan=lifespan,
    # Interactive docs only in development.
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps whatever is already registered, so the LAST call is
# the outermost layer. Registered innermost-first: SlowAPI, CORS, TrustedHost.
# CORS sits outside SlowAPI and routing so OPTIONS preflights are answered
# without a token and without being counted.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_host_list,
)

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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(areas_router, prefix="/api/v1", tags=["Identity Areas"])
app.include_router(systems_router, prefix="/api/v1", tags=["Atomic Systems"])
app.include_router(goals_router, prefix="/api/v1", tags=["Identity Goals"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, code: str, details=None) -> JSONResponse:
    body = ErrorResponse(error=message, code=code, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return _error(exc.status_code, exc.message, exc.code, exc.details)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with one {field, message} entry per failing field."""
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append(FieldError(field=".".join(loc) or "body", message=err.get("msg", "Invalid value")).model_dump())
    return _error(422, "Validation failed", "VALIDATION_ERROR", details)


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """A uniqueness race lost at the database level: same meaning as a pre-checked conflict."""
    logger.warning("Integrity violation on %s %s: %s", request.method, request.url.path, exc.orig)
    return _error(409, "A record with this value already exists", "DUPLICATE_ENTRY")


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a Retry-After header set to the exceeded window.

    Must stay synchronous: SlowAPIMiddleware can only call a plain function
    and falls back to its own bare response for a coroutine handler.
    """
    window = getattr(exc.limit, "limit", None)
    retry_after = window.get_expiry() if hasattr(window, "get_expiry") else 60
    response = _error(429, "Too many requests, please try again later.", "RATE_LIMITED")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing-level errors: unknown paths and methods the path does not support."""
    if exc.status_code == 404:
        return _error(404, f"Route {request.method} {request.url.path} not found", "ROUTE_NOT_FOUND")
    if exc.status_code == 405:
        return _error(405, f"Method {request.method} not allowed", "METHOD_NOT_ALLOWED")
    return _error(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
    """
    logger.exception(
        "Unhandled exception on %s %s at %s",
        request.method,
        request.url,
        datetime.now(timezone.utc).isoformat(),
    )
    return _error(500, "Internal server error", "INTERNAL_ERROR")


# ---------------------------------------------------------------------------
# Health endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state. Exempt from rate limiting:
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


def _db_ok(request: Request) -> bool:
    try:
        request.app.state.user_store.ping()
        request.app.state.habit_store.ping()
    except Exception:
        logger.exception("Database health check failed")
        return False
    return True


@app.get("/api/v1/health", tags=["Health"], response_model=ApiResponse[HealthResponse])
@limiter.exempt
def health(request: Request):
    """Liveness plus a store round-trip. 503 when the database is unreachable."""
    ok = _db_ok(request)
    body = ApiResponse(
        data=HealthResponse(
            status="healthy" if ok else "unhealthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
            version=APP_VERSION,
            environment=settings.environment,
            database="connected" if ok else "disconnected",
            uptime=round(time.monotonic() - _STARTED, 3),
        )
    )
    if ok:
        return body
    return JSONResponse(status_code=503, content=body.model_dump(by_alias=True))


@app.get("/api/v1/health/db", tags=["Health"], response_model=ApiResponse[DbHealthResponse])
@limiter.exempt
def health_db(request: Request):
    start = time.perf_counter()
    ok = _db_ok(request)
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    body = ApiResponse(
        data=DbHealthResponse(
            status="connected" if ok else "disconnected",
            response_time=f"{elapsed_ms}ms" if ok else None,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
    )
    if ok:
        return body
    return JSONResponse(status_code=503, content=body.model_dump(by_alias=True))
