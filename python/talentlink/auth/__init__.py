"""Authentication and authorization module.

This module provides:
- Token verification (HS256 JWT verifier)
- Identity resolution (token -> local uid)
- Auth middleware for FastAPI
- Request state with viewer identity
"""

from talentlink.auth.identity import Identity, IdentityProvider
from talentlink.auth.middleware import AuthMiddleware, Viewer, get_viewer
from talentlink.auth.verifier import JwtTokenVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "Identity",
    "IdentityProvider",
    "JwtTokenVerifier",
    "TokenVerifier",
    "Viewer",
    "get_viewer",
]
