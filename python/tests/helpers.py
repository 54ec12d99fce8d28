"""Test helpers for authentication and common test operations.

Provides:
- Token minting for test authentication (HS256, shared test secret)
- Header generation for test requests
- Envelope unwrapping for API responses
"""

import time

import jwt

from talentlink.config import get_settings

# Default test token settings
DEFAULT_EXPIRES_IN = 3600  # 1 hour


def mint_test_token(
    handle: str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    secret: str | None = None,
    **extra_claims,
) -> str:
    """Mint a valid test JWT token.

    Args:
        handle: The login handle to set as the `sub` claim.
        expires_in: Token validity in seconds from now.
        secret: Signing secret (defaults to the configured secret).
        **extra_claims: Additional claims (name, major, avatar, iss, ...).

    Returns:
        A signed JWT token string.
    """
    if secret is None:
        secret = get_settings().effective_jwt_secret

    now = int(time.time())
    payload = {
        "sub": handle,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def mint_expired_token(handle: str) -> str:
    """Mint a token that expired 1 hour ago (well past the leeway)."""
    return mint_test_token(handle, expires_in=-3600)


def mint_token_with_bad_signature(handle: str) -> str:
    """Mint a token signed with a secret the server doesn't know."""
    return mint_test_token(handle, secret="some-other-secret-that-is-long-enough-0000")


def auth_headers(handle: str, **extra_claims) -> dict[str, str]:
    """Generate authorization headers for a test request.

    Args:
        handle: The login handle to authenticate as.
        **extra_claims: Additional profile claims to include in the token.

    Returns:
        Dict with the Authorization header set.
    """
    token = mint_test_token(handle, **extra_claims)
    return {"Authorization": f"Bearer {token}"}


def data_of(response) -> dict | list:
    """Return the `data` member of a success envelope, asserting it exists."""
    body = response.json()
    assert "data" in body, f"expected success envelope, got {body}"
    return body["data"]


def error_code_of(response) -> str:
    """Return the error code of an error envelope."""
    body = response.json()
    assert "error" in body, f"expected error envelope, got {body}"
    return body["error"]["code"]
