"""Identity resolution: transport credential -> stable user id.

The IdentityProvider is shared by the HTTP auth middleware and the
websocket session. It verifies the credential with a TokenVerifier and
maps the token's handle to the integer uid of the local users row,
creating that row on first sight.
"""

from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from talentlink.auth.verifier import TokenVerifier
from talentlink.services.users import ensure_user


@dataclass(frozen=True)
class Identity:
    """A verified caller."""

    uid: int
    handle: str


class IdentityProvider:
    """Verify a bearer credential and resolve it to a local uid.

    Args:
        verifier: Verifies the token and returns its claims.
        session_factory: Creates a short-lived session for user provisioning.
    """

    def __init__(self, verifier: TokenVerifier, session_factory: Callable[[], Session]):
        self.verifier = verifier
        self.session_factory = session_factory

    def verify(self, token: str) -> Identity:
        """Return the identity behind `token`.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid.
            ApiError(E_AUTH_UNAVAILABLE): Verifier infrastructure failure.
        """
        claims = self.verifier.verify(token)
        handle = claims["sub"].strip()

        db = self.session_factory()
        try:
            uid = ensure_user(
                db,
                handle,
                name=claims.get("name"),
                major=claims.get("major"),
                avatar_url=claims.get("avatar"),
            )
        finally:
            db.close()

        return Identity(uid=uid, handle=handle)
