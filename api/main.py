"""
api/main.py -- FastAPI application entry point for SecureCMS.

Run with:      uvicorn asgi:app --reload

Middleware stack, in the order a request meets it:
  1. log_requests          -- one access log line per request, with latency
  2. TrustedHostMiddleware -- 400 for unexpected Host headers
  3. CORSMiddleware        -- CORS headers for the allowed browser origins
  4. SlowAPIMiddleware     -- per-route rate limits from api.limiter

Lifespan handles startup (settings, database, seed data, components) and
shutdown (dispose the engine) symmetrically. Startup fails fast: a missing
MASTER_ENCRYPTION_KEY or JWT_SECRET_KEY raises ConfigurationError before the
first request can be served.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.audit import router as audit_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.content import router as content_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from auth.crypto import CryptoBox
from auth.dependencies import get_current_subject
from auth.models import Subject
from auth.passwords import CredentialStore
from auth.roles import RoleService
from auth.seed import seed_defaults
from auth.service import AuthService
from auth.tokens import SessionIssuer
from content.service import ContentService
from core.config import Settings, get_settings
from core.errors import CMSError
from db.database import Database

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("securecms.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def init_app_state(app: FastAPI, settings: Settings, db: Database) -> None:
    """Build every component from one Settings instance and attach it to app.state.

    The components are created once per process and shared by all requests;
    none of them holds per-request state. Tests call this directly with an
    in-memory database instead of running the lifespan.
    """
    app.state.settings = settings
    app.state.db = db
    app.state.crypto = CryptoBox.from_settings(settings)
    app.state.credentials = CredentialStore.from_settings(settings)
    app.state.issuer = SessionIssuer.from_settings(settings)
    app.state.auth_service = AuthService(
        db,
        app.state.crypto,
        app.state.credentials,
        app.state.issuer,
        default_role=settings.default_role,
    )
    app.state.role_service = RoleService(db)
    app.state.content_service = ContentService(db)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build components on startup and dispose of the engine on shutdown.

    Order:
      1. Settings first -- ConfigurationError here aborts startup.
      2. Database second -- creates the schema on first run.
      3. Seed third -- the default role must exist before anyone registers.
      4. Components last -- they are built from the same Settings instance.
    """
    logger.info("SecureCMS API starting up")
    settings = get_settings()
    db = Database(settings.database_url)
    seed_defaults(db)
    init_app_state(app, settings, db)
    logger.info("SecureCMS API ready (random_iv=%s)", settings.encryption_random_iv)

    yield

    app.state.db.close()
    logger.info("SecureCMS API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SecureCMS API",
    description="Content management with RBAC, encrypted personal fields and an immutable audit trail.",
    version=API_VERSION,
    lifespan=lifespan,
    # /docs and /redoc are re-registered below behind get_current_subject.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() call wraps everything registered before it, so the
# last one added sees the request first. Registered innermost-first:
# SlowAPI, then CORS, then TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=True,
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost"],
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging
#
# Registered after the class-based middleware, so it is the outermost layer
# and also logs requests that TrustedHost rejects.
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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])
app.include_router(audit_router, prefix="/api/v1", tags=["Audit"])
app.include_router(content_router, prefix="/api/v1", tags=["Content"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(subject: Subject = Depends(get_current_subject)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="SecureCMS API")


@app.get("/redoc", include_in_schema=False)
async def redoc(subject: Subject = Depends(get_current_subject)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="SecureCMS API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves the API as {"error": {"code", "message", "detail"}}.
# Domain errors carry their own code and status; framework errors are mapped
# onto the same envelope.
# ---------------------------------------------------------------------------


def _error(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(CMSError)
async def cms_error_handler(request: Request, exc: CMSError) -> JSONResponse:
    """Map the domain error taxonomy onto HTTP status codes.

    Server-side failures (audit write, configuration) are logged with the
    cause; the client only sees the code and a short message.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return _error(exc.status_code, exc.code, "The operation could not be completed.")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return _error(exc.status_code, exc.code, exc.message, exc.detail, headers=headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "-")
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error(429, "rate_limited", "Too many requests.", str(exc), headers={"Retry-After": str(retry_after)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort. The raw exception goes to the log only, never to the response body."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        database = "ok" if request.app.state.db.ping() else "unavailable"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable")
        database = "unavailable"
    status = "ok" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components={"database": database})
