"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware,
routes, and the app-scoped collaborators kept on app.state:

- live_bus: process-wide LiveBus for room events
- post_catalog: HttpPostCatalog when POST_CATALOG_URL is set, else an
  empty StaticPostCatalog
- identity_provider: token -> uid resolution, shared by HTTP and /ws
- session_factory: sessions for work outside request dependencies (/ws)

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Actual execution order per request:
1. RequestIDMiddleware (sets request_id, starts timer)
2. AuthMiddleware (verifies auth, sets viewer)
3. Route handler
4. AuthMiddleware (returns response)
5. RequestIDMiddleware (logs, sets response header)
"""

import json
from collections.abc import Callable
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from talentlink.api.routes import create_api_router
from talentlink.auth.identity import IdentityProvider
from talentlink.auth.middleware import AuthMiddleware
from talentlink.auth.verifier import JwtTokenVerifier, TokenVerifier
from talentlink.config import get_settings
from talentlink.db.session import get_session_factory
from talentlink.errors import ApiError, ApiErrorCode
from talentlink.logging import configure_logging, get_logger
from talentlink.middleware.request_id import RequestIDMiddleware
from talentlink.responses import (
    api_error_handler,
    database_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from talentlink.services.live_bus import LiveBus
from talentlink.services.post_catalog import HttpPostCatalog, PostCatalog, StaticPostCatalog

logger = get_logger(__name__)


def create_token_verifier() -> JwtTokenVerifier:
    """Create the HS256 verifier from settings."""
    settings = get_settings()
    return JwtTokenVerifier(
        secret=settings.effective_jwt_secret,
        issuer=settings.jwt_issuer,
        leeway=settings.jwt_leeway_s,
    )


def create_post_catalog(app: FastAPI) -> PostCatalog:
    """Create the post catalog; the HTTP client is closed at shutdown."""
    settings = get_settings()
    if not settings.post_catalog_url:
        logger.warning("post_catalog_unconfigured")
        return StaticPostCatalog()

    app.state.httpx_client = httpx.Client(
        timeout=httpx.Timeout(settings.post_catalog_timeout_s, connect=2.0),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
    )
    logger.info("post_catalog_initialized", base_url=settings.post_catalog_url)
    return HttpPostCatalog(
        app.state.httpx_client,
        settings.post_catalog_url,
        timeout_s=settings.post_catalog_timeout_s,
    )


def _open_session() -> Session:
    """Open a session on the default engine (created on first use)."""
    return get_session_factory()()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the post catalog's HTTP client on shutdown."""
    yield

    client = getattr(app.state, "httpx_client", None)
    if client is not None:
        client.close()
        logger.info("httpx_client_closed")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
    session_factory: Callable[[], Session] | None = None,
    post_catalog: PostCatalog | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
        session_factory: Optional session factory (defaults to the app engine).
        post_catalog: Optional post catalog (defaults from settings).

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json)

    app = FastAPI(
        title="TalentLink API",
        description="Chat and LinkU collaboration backend for the TalentLink talent exchange",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.live_bus = LiveBus(max_queue=settings.live_bus_queue_size)
    app.state.post_catalog = post_catalog or create_post_catalog(app)
    app.state.session_factory = session_factory or _open_session
    app.state.identity_provider = IdentityProvider(
        token_verifier or create_token_verifier(),
        app.state.session_factory,
    )

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(DBAPIError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (including malformed JSON)."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
        )

    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Reject malformed JSON bodies before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return JSONResponse(
                            status_code=400,
                            content=error_response(
                                ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"
                            ),
                        )
        return await call_next(request)

    app.include_router(create_api_router())

    # Runs on all HTTP requests except public paths; /ws authenticates itself
    if not skip_auth_middleware:
        app.add_middleware(AuthMiddleware, identity_provider=app.state.identity_provider)
        logger.info("auth_middleware_enabled", env=settings.talentlink_env.value)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.
    This ensures every response includes X-Request-ID, including auth failures.

    Args:
        app: The FastAPI application.
        log_requests: Whether to log access entries for each request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
