"""Room registry: one two-party room per unordered pair of users.

The pair is stored both as given (a = post owner, b = initiator) and
sorted (low_uid, high_uid); the sorted pair carries the unique constraint,
so get_or_create is safe under concurrent first contact.

Store functions run inside the caller's transaction and never commit.
"""

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from talentlink import clock
from talentlink.db.models import ChatRoom
from talentlink.errors import ApiErrorCode, ForbiddenError, InvalidRequestError, NotFoundError
from talentlink.logging import get_logger

logger = get_logger(__name__)


def _pair(a_uid: int, b_uid: int) -> tuple[int, int]:
    return (a_uid, b_uid) if a_uid < b_uid else (b_uid, a_uid)


def find_by_pair(db: Session, a_uid: int, b_uid: int) -> ChatRoom | None:
    low, high = _pair(a_uid, b_uid)
    return db.scalar(select(ChatRoom).where(ChatRoom.low_uid == low, ChatRoom.high_uid == high))


def get_or_create(db: Session, post_ref: int | None, a_uid: int, b_uid: int) -> ChatRoom:
    """Return the unique room for {a_uid, b_uid}, creating it on first contact.

    An existing room keeps its original roles and post_ref.

    Raises:
        InvalidRequestError(E_SELF_CHAT): a_uid == b_uid.
    """
    if a_uid == b_uid:
        raise InvalidRequestError(ApiErrorCode.E_SELF_CHAT, "Cannot open a chat with yourself")

    room = find_by_pair(db, a_uid, b_uid)
    if room is not None:
        return room

    low, high = _pair(a_uid, b_uid)
    try:
        with db.begin_nested():
            room = ChatRoom(
                post_ref=post_ref,
                a_uid=a_uid,
                b_uid=b_uid,
                low_uid=low,
                high_uid=high,
                created_at=clock.utcnow(),
            )
            db.add(room)
    except IntegrityError:
        # Lost race: the other side created the room first
        room = find_by_pair(db, a_uid, b_uid)
        if room is None:
            raise
        return room

    logger.info("chat_room_created", room_id=room.id, a_uid=a_uid, b_uid=b_uid, post_ref=post_ref)
    return room


def find_by_id(db: Session, room_id: int) -> ChatRoom | None:
    return db.get(ChatRoom, room_id)


def lock_room(db: Session, room_id: int) -> ChatRoom | None:
    """Load the room row with SELECT ... FOR UPDATE (no-op lock on SQLite)."""
    return db.scalar(
        select(ChatRoom)
        .where(ChatRoom.id == room_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def get_room_or_404(db: Session, room_id: int) -> ChatRoom:
    """Raises NotFoundError(E_ROOM_NOT_FOUND) for unknown rooms."""
    room = find_by_id(db, room_id)
    if room is None:
        raise NotFoundError(ApiErrorCode.E_ROOM_NOT_FOUND, "Chat room not found")
    return room


def get_room_for_participant(db: Session, room_id: int, uid: int) -> ChatRoom:
    """Load a room and verify `uid` is one of its two participants.

    Raises:
        NotFoundError(E_ROOM_NOT_FOUND): Room doesn't exist.
        ForbiddenError(E_NOT_PARTICIPANT): uid is not a participant.
    """
    room = get_room_or_404(db, room_id)
    if not room.has_participant(uid):
        raise ForbiddenError(ApiErrorCode.E_NOT_PARTICIPANT, "Not a participant of this room")
    return room


def rooms_for_uid(db: Session, uid: int) -> list[ChatRoom]:
    """All rooms where `uid` participates, oldest first."""
    return list(
        db.scalars(
            select(ChatRoom)
            .where(or_(ChatRoom.a_uid == uid, ChatRoom.b_uid == uid))
            .order_by(ChatRoom.id)
        )
    )
