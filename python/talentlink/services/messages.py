"""Message store: append-only log of chat messages per room.

Ordering within a room is (created_at, id). Appends lock the room row
(SELECT ... FOR UPDATE) and never assign a created_at earlier than the
room's current latest message, so insertion order and timestamp order
agree even if the wall clock steps backwards. A new message also lands
strictly after every leave cut in the room, so it is never hidden from a
participant who left in the same clock tick.

Store functions run inside the caller's transaction and never commit.
"""

from datetime import datetime, timedelta

from sqlalchemy import exists, func, select, update
from sqlalchemy.orm import Session

from talentlink import clock
from talentlink.db.models import ChatMessage, MessageKind
from talentlink.logging import get_logger
from talentlink.services import exits, rooms

logger = get_logger(__name__)

# Smallest step past a leave cut (timestamp columns keep microseconds)
CUT_STEP = timedelta(microseconds=1)


def append(
    db: Session,
    room_id: int,
    sender_uid: int,
    receiver_uid: int,
    content: str,
    kind: MessageKind = MessageKind.TEXT,
    linku_ref: int | None = None,
) -> ChatMessage:
    """Persist a message and return it with `id` and `created_at` assigned.

    Must be called within an existing transaction context.

    Raises:
        ValueError: If the room does not exist.
    """
    if rooms.lock_room(db, room_id) is None:
        raise ValueError(f"Chat room {room_id} not found")

    created_at = clock.utcnow()
    newest = latest(db, room_id)
    if newest is not None and newest.created_at > created_at:
        created_at = newest.created_at
    cut = exits.latest_in_room(db, room_id)
    if cut is not None and created_at <= cut:
        created_at = cut + CUT_STEP

    message = ChatMessage(
        room_id=room_id,
        sender_uid=sender_uid,
        receiver_uid=receiver_uid,
        content=content,
        created_at=created_at,
        read_flag=False,
        kind=kind.value,
        linku_ref=linku_ref,
    )
    db.add(message)
    db.flush()

    logger.debug(
        "message_appended",
        room_id=room_id,
        message_id=message.id,
        kind=message.kind,
    )
    return message


def list_after(db: Session, room_id: int, after_ts: datetime | None = None) -> list[ChatMessage]:
    """Messages of a room strictly after `after_ts` (all when None), oldest first."""
    query = select(ChatMessage).where(ChatMessage.room_id == room_id)
    if after_ts is not None:
        query = query.where(ChatMessage.created_at > after_ts)
    return list(db.scalars(query.order_by(ChatMessage.created_at, ChatMessage.id)))


def latest(db: Session, room_id: int) -> ChatMessage | None:
    return db.scalar(
        select(ChatMessage)
        .where(ChatMessage.room_id == room_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(1)
    )


def exists_after(db: Session, room_id: int, ts: datetime) -> bool:
    return bool(
        db.scalar(
            select(
                exists().where(ChatMessage.room_id == room_id, ChatMessage.created_at > ts)
            )
        )
    )


def count_unread(
    db: Session, room_id: int, receiver_uid: int, after_ts: datetime | None = None
) -> int:
    """Unread messages addressed to `receiver_uid`, optionally only after a cut."""
    query = select(func.count(ChatMessage.id)).where(
        ChatMessage.room_id == room_id,
        ChatMessage.receiver_uid == receiver_uid,
        ChatMessage.read_flag.is_(False),
    )
    if after_ts is not None:
        query = query.where(ChatMessage.created_at > after_ts)
    return db.scalar(query) or 0


def mark_read(db: Session, room_id: int, receiver_uid: int) -> int:
    """Flag every unread message addressed to `receiver_uid` in the room as read.

    Returns:
        Number of messages changed.
    """
    result = db.execute(
        update(ChatMessage)
        .where(
            ChatMessage.room_id == room_id,
            ChatMessage.receiver_uid == receiver_uid,
            ChatMessage.read_flag.is_(False),
        )
        .values(read_flag=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
