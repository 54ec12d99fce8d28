"""Token verification implementations.

Provides:
- TokenVerifier: Protocol for token verification
- JwtTokenVerifier: HS256 verifier for tokens issued by the identity service

The identity service signs access tokens with a shared secret. The `sub`
claim carries the user's login handle; `name`, `major` and `avatar` are
optional profile claims used to provision the local user row.
"""

import logging
from typing import Any, Protocol

import jwt
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
)

from talentlink.errors import ApiError, ApiErrorCode

logger = logging.getLogger(__name__)

# Clock skew allowance in seconds (overridable per verifier)
CLOCK_SKEW_SECONDS = 60

JWT_ALGORITHM = "HS256"


class TokenVerifier(Protocol):
    """Protocol for token verification.

    Implementations must verify JWT tokens and return decoded claims.
    """

    def verify(self, token: str) -> dict[str, Any]:
        """Verify token and return decoded claims.

        Args:
            token: The JWT token string to verify.

        Returns:
            Decoded JWT claims dictionary.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid, expired, or malformed.
            ApiError(E_AUTH_UNAVAILABLE): Infrastructure failure.
        """
        ...


class JwtTokenVerifier:
    """Verifier for HS256 tokens signed with the shared identity secret.

    Validates:
    - Signature (HS256 only)
    - exp with clock skew leeway
    - iss matches the configured issuer, when one is configured
    - sub is a non-empty string (the login handle)
    """

    def __init__(
        self,
        secret: str,
        issuer: str | None = None,
        leeway: int = CLOCK_SKEW_SECONDS,
    ):
        self.secret = secret
        self.issuer = issuer.rstrip("/") if issuer else None
        self.leeway = leeway

    def verify(self, token: str) -> dict[str, Any]:
        """Verify a JWT token.

        Args:
            token: The JWT token string.

        Returns:
            Decoded claims dictionary.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid.
        """
        required = ["exp", "sub"]
        if self.issuer:
            required.append("iss")

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[JWT_ALGORITHM],
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": required},
            )
        except ExpiredSignatureError as e:
            logger.warning("auth_failure", extra={"reason": "expired_token"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Token expired") from e
        except InvalidSignatureError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_signature"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token signature") from e
        except InvalidIssuerError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_issuer"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token issuer") from e
        except DecodeError as e:
            logger.warning("auth_failure", extra={"reason": "decode_error", "error": str(e)})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token format") from e
        except InvalidTokenError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_token", "error": str(e)})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token") from e

        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub.strip():
            logger.warning("auth_failure", extra={"reason": "missing_sub"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token: missing sub")

        return payload
