"""
api/main.py -- FastAPI application entry point for IdentityGate.

Run with:  uvicorn api.main:app --reload

Middleware, in registration order (Starlette runs the last one registered
outermost, so a request meets them bottom-up):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every long-lived object once (identity store, challenge
store, notifier, background dispatcher, service), attaches them to app.state,
and tears them down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
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
from api.routes.v1.auth import router as auth_router
from auth.service import IdentityService
from auth.store import IdentityStore
from challenges.generator import CodeGenerator
from challenges.store import ChallengeStore
from core.config import get_settings
from core.errors import InternalError
from core.tasks import BackgroundDispatcher
from notify.mailer import build_notifier

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("identitygate.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: float) -> None:
    """Evict expired challenges every `interval` seconds.

    Correctness never depends on this loop -- expired codes are already
    rejected on access. It only keeps abandoned registrations from
    accumulating in memory. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.challenge_store.purge_expired()
        if removed:
            logger.info("Purged %d expired challenges", removed)


# ---------------------------------------------------------------------------
# Lifespan -- builds and tears down every long-lived collaborator
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the stores, dispatcher and service on startup; release them on shutdown.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    Shutdown order matters: the purge task stops first, then the dispatcher
    drains (pending emails and verified-flag writes still need the identity
    store), and only then is the store closed.
    """
    settings = get_settings()
    logger.info("IdentityGate API starting up")
    app.state.identity_store = IdentityStore(settings.database_url)
    app.state.challenge_store = ChallengeStore(
        ttl_seconds=settings.otp_ttl_seconds,
        max_attempts=settings.otp_max_attempts,
        generator=CodeGenerator(settings.otp_digits, settings.otp_leading_zeros),
    )
    app.state.dispatcher = BackgroundDispatcher(max_workers=settings.background_workers)
    app.state.identity_service = IdentityService(
        identities=app.state.identity_store,
        challenges=app.state.challenge_store,
        notifier=build_notifier(settings),
        dispatcher=app.state.dispatcher,
        require_verification=settings.require_verification,
    )
    logger.info(
        "Auth initialized (otp_digits=%d, otp_ttl=%ds, require_verification=%s)",
        settings.otp_digits,
        settings.otp_ttl_seconds,
        settings.require_verification,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.otp_purge_interval_seconds))

    yield

    # Shutdown
    app.state.purge_task.cancel()
    app.state.dispatcher.shutdown(wait=True)
    app.state.challenge_store.close()
    app.state.identity_store.close()
    logger.info("IdentityGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="IdentityGate API",
    description="Registration, email one-time-code verification, and session tokens.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Registered innermost first. A request passes SlowAPI, then CORS, then
# TrustedHost before reaching a route.
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

# SlowAPIMiddleware finds the limiter on app.state.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Paths only -- bodies carry passwords and codes.
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


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves as {"error": {"code", "message", "detail"}}. Clients
# branch on error.code; the status code alone is not enough to tell cases apart.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when the request body fails validation.

    Only field locations and messages are echoed; the submitted values
    (passwords, codes) are left out.
    """
    fields = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(fields),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap HTTPException in the error envelope.

    Route handlers raise HTTPException with a dict detail. When detail is
    already a structured dict, use it directly as the error field rather than
    stringifying it. Headers set on the exception (Cache-Control) are kept.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(InternalError)
async def internal_error_handler(request: Request, exc: InternalError) -> JSONResponse:
    """Abort with a generic 500 when a core primitive or the directory fails.

    Covers EntropyError, SigningError, CredentialError and PersistenceError.
    The exception and traceback go to the log only, never to the body.
    """
    logger.error("%s on %s %s", type(exc).__name__, request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort for anything no other handler claimed.

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
# Health endpoint
#
# Lives on the app itself rather than the auth router, and carries no rate
# limit, so health checks never compete with login traffic for the budget.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    db_ok = request.app.state.identity_store.ping()
    return HealthResponse(
        status="healthy",
        version=__version__,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
