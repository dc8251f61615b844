"""
api/main.py -- FastAPI application factory for Gatehouse.

Run with:  uvicorn asgi:app --reload

create_app(settings) wires everything explicitly from one Settings object:
  PasswordHasher  -- built eagerly; its constructor hashes a dummy password,
                     so a broken bcrypt install fails here, before serving.
  TokenService    -- built eagerly; a missing signing secret fails here.
  RouteTable      -- built eagerly from ROUTE_POLICY and the included routers.
  CredentialStore -- opened in lifespan startup, disposed on shutdown.
  AuthService, RouteGuard -- assembled in lifespan once the store exists.

Every API route depends on enforce_route_policy (app-wide dependency), so the
guard runs after routing has resolved the route name and before the handler.

Middleware stack (outermost to innermost; Starlette puts each newly added
middleware in front of the previous ones):
  1. log_requests       -- method, path, status, latency, client
  2. CORSMiddleware     -- adds CORS headers for allowed browser origins

Rate limits are applied by the @limiter.limit wrappers on the credential
routes themselves; RateLimitExceeded raised there becomes a 429 envelope.
Settings.rate_limit_enabled is stored on app.state, so each app built here
switches its own limits without touching the shared limiter.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routing import build_route_table
from auth.dependencies import enforce_route_policy
from auth.guard import RouteGuard
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import TokenService
from core.config import Settings
from core.log import configure_logging

VERSION = "0.1.0"

logger = logging.getLogger("gatehouse.api")


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler.
# ---------------------------------------------------------------------------


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
# Health endpoint
#
# Registered directly by create_app (not in a router) so it is always
# reachable regardless of router registration state. Public in ROUTE_POLICY.
# ---------------------------------------------------------------------------


async def health() -> HealthResponse:
    """Return liveness."""
    return HealthResponse()


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(code="rate_limited", message="Too many requests.", detail=str(exc.detail))
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for HTTP exceptions, keeping their headers.

    The route guard raises with detail already shaped as an ErrorDetail dict
    and a WWW-Authenticate header; both pass through unchanged.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))).model_dump(),
        headers=exc.headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")).model_dump(),
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings) -> FastAPI:
    """Build a fully wired Gatehouse app. Raises on any fatal configuration."""
    configure_logging(settings.log_level)

    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    tokens = TokenService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Open the credential store and assemble the request-time services.

        Everything before yield runs on startup; everything after yield runs
        on shutdown.
        """
        logger.info("Gatehouse API starting up")
        store = CredentialStore(settings.database_url)
        app.state.store = store
        app.state.auth_service = AuthService(store, hasher, tokens)
        app.state.guard = RouteGuard(app.state.route_table, tokens, store)
        logger.info(
            "Auth initialized (routes=%d, token_ttl=%ds, bcrypt_rounds=%d)",
            len(app.state.route_table),
            tokens.ttl_seconds,
            hasher.rounds,
        )

        yield

        store.close()
        logger.info("Gatehouse API shutdown complete")

    app = FastAPI(
        title="Gatehouse API",
        description="Credential issuance and request authorization.",
        version=VERSION,
        lifespan=lifespan,
        dependencies=[Depends(enforce_route_policy)],
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )
    app.middleware("http")(log_requests)

    # slowapi looks for app.state.limiter by convention. The limiter object is
    # shared by every app in the process; the on/off switch is per app.
    app.state.limiter = limiter
    app.state.rate_limit_enabled = settings.rate_limit_enabled

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.add_api_route("/healthz", health, methods=["GET"], name="healthz", response_model=HealthResponse, tags=["Health"])
    app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])

    app.state.route_table = build_route_table(app, routers=(auth_router,))
    return app
