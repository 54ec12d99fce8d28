"""LinkU store: persistence for connections and reviews.

Store functions run inside the caller's transaction and never commit.
"""

from datetime import datetime

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from talentlink import clock
from talentlink.db.models import LinkuConnection, LinkuReview, LinkuStatus
from talentlink.errors import ApiErrorCode, ConflictError

# =============================================================================
# Connections
# =============================================================================


def create_connection(
    db: Session,
    room_id: int,
    post_ref: int | None,
    requester_uid: int,
    target_uid: int,
) -> LinkuConnection:
    connection = LinkuConnection(
        room_id=room_id,
        post_ref=post_ref,
        requester_uid=requester_uid,
        target_uid=target_uid,
        status=LinkuStatus.PENDING.value,
        completed=False,
        created_at=clock.utcnow(),
    )
    db.add(connection)
    db.flush()
    return connection


def lock_connection(db: Session, connection_id: int) -> LinkuConnection | None:
    """Load the connection row with SELECT ... FOR UPDATE, refreshing any cached copy."""
    return db.scalar(
        select(LinkuConnection)
        .where(LinkuConnection.id == connection_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def status_of(db: Session, connection_id: int) -> str | None:
    return db.scalar(select(LinkuConnection.status).where(LinkuConnection.id == connection_id))


def statuses_of(db: Session, connection_ids: set[int]) -> dict[int, str]:
    """Current status for each known connection id."""
    if not connection_ids:
        return {}
    rows = db.execute(
        select(LinkuConnection.id, LinkuConnection.status).where(
            LinkuConnection.id.in_(connection_ids)
        )
    )
    return {row.id: row.status for row in rows}


def latest_in_room(db: Session, room_id: int, status: LinkuStatus) -> LinkuConnection | None:
    """Newest connection of a room in `status` (by created_at, then id)."""
    return db.scalar(
        select(LinkuConnection)
        .where(LinkuConnection.room_id == room_id, LinkuConnection.status == status.value)
        .order_by(LinkuConnection.created_at.desc(), LinkuConnection.id.desc())
        .limit(1)
    )


def count_accepted(db: Session, uid: int, completed: bool | None = None) -> int:
    """ACCEPTED connections involving `uid`, optionally filtered by completion."""
    query = select(func.count(LinkuConnection.id)).where(
        LinkuConnection.status == LinkuStatus.ACCEPTED.value,
        or_(LinkuConnection.requester_uid == uid, LinkuConnection.target_uid == uid),
    )
    if completed is not None:
        query = query.where(LinkuConnection.completed.is_(completed))
    return db.scalar(query) or 0


def completed_connections_for(db: Session, uid: int) -> list[LinkuConnection]:
    """Completed (accepted and reviewed) connections involving `uid`, newest first."""
    return list(
        db.scalars(
            select(LinkuConnection)
            .where(
                LinkuConnection.status == LinkuStatus.ACCEPTED.value,
                LinkuConnection.completed.is_(True),
                or_(LinkuConnection.requester_uid == uid, LinkuConnection.target_uid == uid),
            )
            .order_by(LinkuConnection.created_at.desc(), LinkuConnection.id.desc())
        )
    )


# =============================================================================
# Reviews
# =============================================================================


def review_exists(db: Session, connection_id: int, reviewer_uid: int) -> bool:
    return (
        db.scalar(
            select(LinkuReview.id).where(
                LinkuReview.connection_id == connection_id,
                LinkuReview.reviewer_uid == reviewer_uid,
            )
        )
        is not None
    )


def add_review(
    db: Session,
    connection: LinkuConnection,
    relation: str,
    kindness: int,
    content: str,
) -> LinkuReview:
    """Insert the invitee's review of the proposer.

    Raises:
        ConflictError(E_ALREADY_REVIEWED): A concurrent review won the race.
    """
    review = LinkuReview(
        connection_id=connection.id,
        reviewer_uid=connection.target_uid,
        target_uid=connection.requester_uid,
        relation=relation,
        kindness=kindness,
        content=content,
        created_at=clock.utcnow(),
    )
    try:
        with db.begin_nested():
            db.add(review)
    except IntegrityError:
        raise ConflictError(
            ApiErrorCode.E_ALREADY_REVIEWED, "This LinkU has already been reviewed"
        ) from None
    return review


def get_review(db: Session, review_id: int) -> LinkuReview | None:
    return db.get(LinkuReview, review_id)


def delete_review(db: Session, review_id: int) -> None:
    db.execute(delete(LinkuReview).where(LinkuReview.id == review_id))


def reviews_for_target(db: Session, uid: int) -> list[LinkuReview]:
    """Reviews received by `uid`, newest first."""
    return list(
        db.scalars(
            select(LinkuReview)
            .where(LinkuReview.target_uid == uid)
            .order_by(LinkuReview.created_at.desc(), LinkuReview.id.desc())
        )
    )


def kindness_stats(db: Session, uid: int) -> tuple[int, int]:
    """(kindness total, review count) over reviews received by `uid`; (0, 0) if none."""
    total, count = db.execute(
        select(
            func.coalesce(func.sum(LinkuReview.kindness), 0),
            func.count(LinkuReview.id),
        ).where(LinkuReview.target_uid == uid)
    ).one()
    return int(total), count or 0


def latest_review_at(db: Session, connection_id: int) -> datetime | None:
    return db.scalar(
        select(LinkuReview.created_at)
        .where(LinkuReview.connection_id == connection_id)
        .order_by(LinkuReview.created_at.desc())
        .limit(1)
    )
