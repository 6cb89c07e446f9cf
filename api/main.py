"""
api/main.py -- FastAPI application entry point for quotegate.

Serves the session, authorization and delegated-capability endpoints that the
quotation/vendor front end and its client session manager talk to.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware      -- CORS headers for the configured browser origins
  2. log_requests        -- one log line per request with latency
  3. session_gate        -- bearer token check, attaches request.state.identity
  4. maintenance_gate    -- 503 for writes while maintenance is active
  5. SlowAPIMiddleware   -- per-route rate limits from api.limiter

Lifespan handles startup (auth store, credential pool, status state, purge
task) and shutdown (cancel purge task, drain migrations, close DB) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import HealthResponse
from api.routes.auth import router as auth_router
from api.routes.status import router as status_router
from api.routes.users import router as users_router
from auth.credentials import CredentialStore
from auth.errors import AuthError
from auth.middleware import session_gate
from auth.models import ROLE_ADMIN
from auth.registration import RegistrationCodeIssuer
from auth.store import AuthStore
from core.config import get_settings
from core.status import AnnouncementBoard, MaintenanceState

APP_VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("quotegate.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


PURGE_INTERVAL_SECONDS = 6 * 60 * 60


async def _purge_loop(app: FastAPI, interval: float = PURGE_INTERVAL_SECONDS) -> None:
    """Purge expired registration codes every `interval` seconds (6 hours).

    The purge is a blocking database call, so it runs on a worker thread. A
    failed round is logged and the loop carries on with the next one.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.issuer.purge_expired)
        except SQLAlchemyError:
            logger.exception("Registration code purge failed, retrying in %ss", interval)


def _bootstrap_admin(credentials: CredentialStore) -> None:
    """Create the first admin from FIRST_ADMIN_USERNAME/PASSWORD on an empty database."""
    if credentials.store.has_users():
        return
    if not (_settings.first_admin_username and _settings.first_admin_password):
        logger.warning("No users exist -- run `python main.py create-admin` to bootstrap an administrator")
        return
    credentials.create(
        _settings.first_admin_username,
        _settings.first_admin_password,
        _settings.first_admin_username,
        ROLE_ADMIN,
        created_by="system",
    )
    logger.info("Bootstrap admin %r created from settings", _settings.first_admin_username)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the store before the services that wrap it, and
    the purge task last because it references app.state.issuer.
    """
    logger.info("quotegate API starting up")
    app.state.auth_store = AuthStore(_settings.database_url)
    app.state.credentials = CredentialStore(app.state.auth_store)
    app.state.issuer = RegistrationCodeIssuer(app.state.auth_store, app.state.credentials)
    app.state.maintenance = MaintenanceState()
    app.state.announcements = AnnouncementBoard()
    _bootstrap_admin(app.state.credentials)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))
    logger.info("Auth initialized (%s)", _settings.database_url.split("://", 1)[0])

    yield

    app.state.purge_task.cancel()
    app.state.credentials.close()
    app.state.auth_store.close()
    logger.info("quotegate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="quotegate API",
    description="Sessions, role gating and delegated vendor-edit access for the quotation store.",
    version=APP_VERSION,
    lifespan=lifespan,
    # /docs and /openapi.json sit behind the session gate like every other path.
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette makes the most recently registered middleware the outermost, so
# registration runs innermost first: SlowAPI -> maintenance -> session ->
# logging -> CORS.
# ---------------------------------------------------------------------------

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def maintenance_gate(request: Request, call_next):
    """Reject writes with 503 while maintenance is active.

    Reads stay available, and so do /auth/ (so sessions keep working) and
    /maintenance (so an admin can end it).
    """
    if request.method not in ("GET", "HEAD", "OPTIONS"):
        path = request.url.path
        if not path.startswith(("/auth/", "/maintenance")):
            maintenance: MaintenanceState | None = getattr(request.app.state, "maintenance", None)
            if maintenance is not None and maintenance.blocks_writes():
                return JSONResponse(
                    status_code=503,
                    content={"success": False, "message": "The service is under maintenance. Please retry later."},
                )
    return await call_next(request)


app.middleware("http")(session_gate)


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


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])
app.include_router(users_router, tags=["Users"])
app.include_router(status_router, tags=["Status"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {success, message, errors} envelope so clients
# can parse errors uniformly without inspecting status codes first.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, errors: list | None = None, headers: dict | None = None) -> JSONResponse:
    content: dict = {"success": False, "message": message}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return _error(exc.status_code, exc.message, exc.errors, headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error(429, "Too many requests.", headers={"Retry-After": str(retry_after)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one entry per offending field."""
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())[1:]) or "body",
            "message": err.get("msg", "Invalid value."),
        }
        for err in exc.errors()
    ]
    return _error(400, "Request validation failed.", errors)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The exception goes to the log. The response only carries its text when
    DEBUG=true.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    errors = [{"detail": repr(exc)}] if _settings.debug else None
    return _error(500, "An unexpected error occurred.", errors)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Public and never rate limited.
# ---------------------------------------------------------------------------


@app.get("/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        database = "ok" if request.app.state.auth_store.ping() else "unavailable"
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        database = "unavailable"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=APP_VERSION, components={"app": "ok", "database": database})
