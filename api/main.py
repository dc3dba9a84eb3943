"""
api/main.py -- FastAPI application entry point (the Request Gateway).

Run with:  uvicorn api.main:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces default rate limits from api.limiter
plus two HTTP middlewares registered below them: request logging and
security response headers.

Lifespan handles startup (settings, storage engine, AuthService, session
purge task) and shutdown (cancel purge task, dispose engine) symmetrically.

Error mapping: AuthService raises AuthError subclasses; auth_error_handler
turns them into {"error": {"code", "message"}} with the subclass's status
(401 auth failures, 409 duplicate registration, 400 bad input, 500 internal).
Every other handler uses the same envelope.
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
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse, RootResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.protected import router as protected_router
from auth.exceptions import AuthError
from auth.service import build_auth_service
from auth.store import create_auth_engine
from core.config import get_settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gtdauth.api")

_settings = get_settings()
_STARTED_AT = time.monotonic()


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: float) -> None:
    """Delete expired sessions every `interval` seconds.

    Expired sessions are already rejected on read (lazy expiry); this only
    keeps dead rows from piling up. The delete runs in a worker thread. A
    failed pass is logged and the loop carries on. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep and
    unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(app.state.auth_service.sessions.purge_expired)
        except Exception:
            logger.exception("Session purge failed")
            continue
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth core once and share it through app.state.

    Settings are read once here and passed explicitly into the services;
    nothing below this point reads the environment.
    """
    logger.info("GTD auth API starting up")
    engine = create_auth_engine(_settings.database_url)
    app.state.engine = engine
    app.state.auth_service = build_auth_service(_settings, engine)
    logger.info("Auth initialized (has_users=%s)", app.state.auth_service.users.has_users())
    interval = _settings.session_purge_interval_seconds
    app.state.purge_task = asyncio.create_task(_purge_loop(app, interval)) if interval else None

    yield

    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
    engine.dispose()
    logger.info("GTD auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="GTD Auth API",
    description="Username/password authentication with rotating refresh-token sessions.",
    version=VERSION,
    lifespan=lifespan,
    # Interactive docs only in dev mode.
    docs_url="/docs" if _settings.debug else None,
    redoc_url="/redoc" if _settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
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
        request.client.host if request.client else "unknown",
    )
    return response


# Response headers set on every reply, error responses included.
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(protected_router, prefix="/api/v1", tags=["Protected"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthService failure with the status its class declares.

    InternalError has already been logged with its traceback by AuthService;
    the client only ever sees the generic message.
    """
    response = JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests, please try again later.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when a request body fails validation."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured error for routing failures (404, 405) and explicit HTTPExceptions."""
    if exc.status_code == 404:
        error = ErrorDetail(code="not_found", message="Route not found.", detail=request.url.path)
    else:
        error = ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=error).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Root and health endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state. Health is exempt from rate
# limiting -- load balancers and monitors must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/", response_model=RootResponse, tags=["Health"])
async def root() -> RootResponse:
    return RootResponse(message="GTD auth API is running!", version=VERSION, timestamp=_utcnow_iso())


@limiter.exempt  # registers the name only; the middleware skips exempt handlers
@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness, version, and process uptime."""
    return HealthResponse(
        version=VERSION,
        uptime=round(time.monotonic() - _STARTED_AT, 3),
        timestamp=_utcnow_iso(),
    )
