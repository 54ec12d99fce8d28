"""Exit log: per-(room, user) history of explicit leaves.

Every leave inserts a row; only the newest exited_at (the viewer's cut)
is ever read. Rows are never updated or deleted.
"""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from talentlink.db.models import ChatRoomExit


def record(db: Session, room_id: int, uid: int, now: datetime) -> ChatRoomExit:
    exit_record = ChatRoomExit(room_id=room_id, uid=uid, exited_at=now)
    db.add(exit_record)
    db.flush()
    return exit_record


def latest(db: Session, room_id: int, uid: int) -> datetime | None:
    """The viewer's cut for a room, or None if they never left it."""
    return db.scalar(
        select(ChatRoomExit.exited_at)
        .where(ChatRoomExit.room_id == room_id, ChatRoomExit.uid == uid)
        .order_by(ChatRoomExit.exited_at.desc())
        .limit(1)
    )


def latest_in_room(db: Session, room_id: int) -> datetime | None:
    """Newest cut of any participant; new messages must land strictly after it."""
    return db.scalar(
        select(func.max(ChatRoomExit.exited_at)).where(ChatRoomExit.room_id == room_id)
    )
