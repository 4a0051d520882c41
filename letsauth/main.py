"""FastAPI application entry point.

create_app() assembles one Let's Auth process:
- IdP and/or RP routers under /api/v1, per settings.role
- the IdP's public key set at its well-known path
- collaborators (stores, keys, link sink) built at startup, closed at shutdown,
  with a background sweep of expired entries for the in-memory stores
- the error envelope for protocol errors, validation errors, rate limits,
  and anything unexpected
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from letsauth.api.deps import ensure_dependencies
from letsauth.api.v1 import idp
from letsauth.api.v1.router import build_router
from letsauth.core.config import settings
from letsauth.core.errors import APIError
from letsauth.core.rate_limiting import limiter, rate_limit_exceeded_handler
from letsauth.core.responses import error_response
from letsauth.services.store_sweeper import StoreSweeper

logger = structlog.get_logger()

_SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    # Confirmation links carry the token in the query string
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

_HSTS = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every response.

    API responses also get Cache-Control: no-store, since they carry
    assertions and confirmation links. HSTS is sent in production only
    (TLS terminates at the reverse proxy).
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)

        response.headers.update(_SECURITY_HEADERS)
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = _HSTS

        return response


# =============================================================================
# Exception handlers
# =============================================================================


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError; 503s tell the client when to retry."""
    headers = {"Retry-After": "1"} if exc.status_code == 503 else None
    return error_response(
        exc.status_code, exc.code, exc.message, exc.details, headers=headers
    )


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures as 400 VALIDATION_ERROR.

    Each field error becomes one entry in ``details``.
    """
    details = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    return error_response(
        400, "VALIDATION_ERROR", "Request validation failed", details
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log the exception, return 500 without a stack trace."""
    logger.exception("Unhandled exception", exc_info=exc, path=str(request.url.path))
    return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


# =============================================================================
# Application factory
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build collaborators and start the in-memory sweeper; undo both at shutdown."""
    deps = ensure_dependencies(app)
    sweeper = None
    if settings.store_backend == "memory":
        sweeper = StoreSweeper(
            deps.stores(), interval_seconds=settings.store_sweep_interval_seconds
        )
        sweeper.start()
    app.state.sweeper = sweeper
    logger.info(
        "Let's Auth starting",
        role=settings.role,
        store_backend=settings.store_backend,
        algorithm=settings.assertion_algorithm,
    )
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()
        app.state.sweeper = None
        await deps.close()
        app.state.deps = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Routers are mounted according to settings.role, read at call time.
    """
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(
        title="Let's Auth",
        version="1.0.0",
        description="Email-ownership authentication for IdPs and relying parties",
        lifespan=lifespan,
    )
    app.state.deps = None
    app.state.sweeper = None
    app.state.limiter = limiter

    # Starlette runs the last-added middleware first; CORS must see
    # preflight requests before anything else
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept"],
    )

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.include_router(
        build_router(serves_idp=settings.serves_idp, serves_rp=settings.serves_rp),
        prefix="/api/v1",
    )
    if settings.serves_idp:
        app.include_router(idp.jwks_router, tags=["idp"])

    @app.get("/health")
    def health_check() -> dict:
        """Liveness probe; reports which role(s) this process serves."""
        return {"status": "healthy", "role": settings.role}

    return app


# uvicorn letsauth.main:app
app = create_app()
