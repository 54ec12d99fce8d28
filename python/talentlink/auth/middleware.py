"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware for bearer token verification
- get_viewer: Dependency for accessing authenticated viewer identity
- extract_bearer_token: Shared header parsing (also used by the websocket)
"""

import logging
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from talentlink.auth.identity import IdentityProvider
from talentlink.errors import ApiError, ApiErrorCode
from talentlink.responses import error_response

logger = logging.getLogger(__name__)

# Header names
AUTHORIZATION_HEADER = "authorization"

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        uid: The viewer's stable internal user id.
        handle: The viewer's login handle (JWT sub claim).
    """

    uid: int
    handle: str


def extract_bearer_token(auth_header: str | None) -> str:
    """Extract the token from an Authorization header value.

    Raises:
        ApiError(E_UNAUTHENTICATED): Header missing or not a bearer credential.
    """
    if not auth_header:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")

    # Check for Bearer prefix (case-insensitive)
    if not auth_header.lower().startswith("bearer "):
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid authorization header format")

    token = auth_header[7:].strip()
    if not token:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid authorization header format")

    return token


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for FastAPI.

    Enforces bearer token authentication on all non-public HTTP paths.
    Websocket connections bypass this middleware and authenticate in the
    session handler.

    Order of checks:
    1. Skip if public path or CORS preflight
    2. Extract and parse bearer token
    3. Resolve token to a uid via IdentityProvider (provisions user row)
    4. Attach Viewer to request state
    """

    def __init__(self, app: ASGIApp, identity_provider: IdentityProvider):
        super().__init__(app)
        self.identity_provider = identity_provider

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        """Process the request through auth checks."""
        if request.url.path in PUBLIC_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        try:
            token = extract_bearer_token(request.headers.get(AUTHORIZATION_HEADER))
        except ApiError as e:
            logger.warning(
                "auth_failure",
                extra={"reason": e.message, "request_path": request.url.path},
            )
            return self._error_json_response(e.code, e.message, e.status_code)

        try:
            identity = self.identity_provider.verify(token)
        except ApiError as e:
            return self._error_json_response(e.code, e.message, e.status_code)
        except Exception as e:
            logger.exception("Identity resolution failed: %s", e)
            return self._error_json_response(
                ApiErrorCode.E_INTERNAL,
                "Internal server error",
                500,
            )

        request.state.viewer = Viewer(uid=identity.uid, handle=identity.handle)

        return await call_next(request)

    def _error_json_response(
        self, code: ApiErrorCode, message: str, status_code: int
    ) -> JSONResponse:
        """Create a JSON error response."""
        return JSONResponse(
            status_code=status_code,
            content=error_response(code, message),
        )


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        ApiError: If viewer is not set (middleware didn't run or path is public).
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer

