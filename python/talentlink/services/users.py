"""Local user profiles.

Users are provisioned from verified token claims on first sight; the
identity service remains the source of truth for credentials.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from talentlink import clock
from talentlink.db.models import User
from talentlink.db.session import transaction
from talentlink.errors import ApiErrorCode, NotFoundError
from talentlink.logging import get_logger
from talentlink.schemas.chat import UserSummary

logger = get_logger(__name__)


def ensure_user(
    db: Session,
    handle: str,
    name: str | None = None,
    major: str | None = None,
    avatar_url: str | None = None,
) -> int:
    """Return the uid for `handle`, creating the user row if needed.

    Race-safe: two first requests for the same handle converge on one row.
    Profile claims only fill in missing fields; they never overwrite.

    Returns:
        The user's uid.
    """
    with transaction(db):
        user = db.scalar(select(User).where(User.handle == handle))
        if user is None:
            try:
                with db.begin_nested():
                    user = User(
                        handle=handle,
                        name=name,
                        major=major,
                        avatar_url=avatar_url,
                        created_at=clock.utcnow(),
                    )
                    db.add(user)
                logger.info("user_provisioned", uid=user.id, handle=handle)
            except IntegrityError:
                # Lost race: another request created it
                user = db.scalar(select(User).where(User.handle == handle))
                if user is None:
                    raise RuntimeError(f"Failed to provision user {handle}") from None
        else:
            if user.name is None and name:
                user.name = name
            if user.major is None and major:
                user.major = major
            if user.avatar_url is None and avatar_url:
                user.avatar_url = avatar_url

    return user.id


def get_user_or_404(db: Session, uid: int) -> User:
    """Load a user by uid.

    Raises:
        NotFoundError(E_USER_NOT_FOUND): No such user.
    """
    user = db.get(User, uid)
    if user is None:
        raise NotFoundError(ApiErrorCode.E_USER_NOT_FOUND, "User not found")
    return user


def get_user_by_handle_or_404(db: Session, handle: str) -> User:
    """Load a user by login handle.

    Raises:
        NotFoundError(E_USER_NOT_FOUND): No such user.
    """
    user = db.scalar(select(User).where(User.handle == handle.strip()))
    if user is None:
        raise NotFoundError(ApiErrorCode.E_USER_NOT_FOUND, "User not found")
    return user


def load_users(db: Session, uids: set[int]) -> dict[int, User]:
    """Load several users at once, keyed by uid. Unknown uids are absent."""
    if not uids:
        return {}
    users = db.scalars(select(User).where(User.id.in_(uids)))
    return {u.id: u for u in users}


def display_name(user: User | None) -> str | None:
    """Name shown to other users: profile name, falling back to the handle."""
    if user is None:
        return None
    return user.name or user.handle


def to_summary(user: User) -> UserSummary:
    return UserSummary(
        uid=user.id,
        handle=user.handle,
        name=user.name,
        major=user.major,
        avatar=user.avatar_url,
    )
