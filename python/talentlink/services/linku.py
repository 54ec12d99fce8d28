"""LinkU core: proposal state machine, reviews, and rating aggregation.

Transitions (only the invitee acts after a proposal):

    propose              -> PENDING
    accept   PENDING     -> ACCEPTED (accepted_at set once)
    accept   ACCEPTED    -> ACCEPTED (re-accept while not completed; new card)
    reject   PENDING     -> REJECTED
    review   ACCEPTED    -> ACCEPTED + completed

Every other (state, action) pair fails with E_CONFLICT. Transitions lock
the connection row and carry an optimistic version, so two concurrent
actions on one connection produce one winner and one E_CONFLICT.

Each transition writes a card into the room through the chat core, in
the same transaction as the state change.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from talentlink import clock
from talentlink.config import get_settings
from talentlink.db.models import (
    LinkuConnection,
    LinkuReview,
    LinkuStatus,
    MessageKind,
    RelationRating,
    User,
)
from talentlink.db.session import transaction
from talentlink.errors import (
    ApiErrorCode,
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from talentlink.logging import get_logger
from talentlink.schemas.linku import LinkuStateView, MyConnectionView, RatingSummary, ReviewView
from talentlink.services import chat, linku_store, rooms, users
from talentlink.services.live_bus import LiveBus
from talentlink.services.post_catalog import PostCatalog, title_or_none

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

PROPOSE_DEFAULT_TEXT = "proposed a LinkU collaboration."
ACCEPT_TEXT = "LinkU accepted."
REJECT_TEXT = "LinkU rejected."
REVIEW_NOTICE_TEXT = "{name} left a review."

MIN_KINDNESS = 1
MAX_KINDNESS = 5

DATE_FORMAT = "%Y-%m-%d"
REVIEW_TIME_FORMAT = "%Y-%m-%d %H:%M"


# =============================================================================
# State views
# =============================================================================


def _state_view(
    db: Session, connection: LinkuConnection | None, viewer_uid: int
) -> LinkuStateView:
    if connection is None:
        return LinkuStateView(linked=False, can_review=False)

    accepted = connection.status == LinkuStatus.ACCEPTED.value
    can_review = (
        accepted
        and viewer_uid == connection.target_uid
        and not connection.completed
        and not linku_store.review_exists(db, connection.id, viewer_uid)
    )
    return LinkuStateView(
        linked=accepted,
        can_review=can_review,
        connection_id=connection.id,
        status=connection.status,
    )


def get_state(db: Session, viewer_uid: int, room_id: int) -> LinkuStateView:
    """Current LinkU state of a room for the viewer.

    The current connection is the newest ACCEPTED one, else the newest
    PENDING one; rejected proposals never count.

    Raises:
        NotFoundError(E_ROOM_NOT_FOUND): Room doesn't exist.
        ForbiddenError(E_NOT_PARTICIPANT): Viewer is not a participant.
    """
    rooms.get_room_for_participant(db, room_id, viewer_uid)
    connection = linku_store.latest_in_room(db, room_id, LinkuStatus.ACCEPTED)
    if connection is None:
        connection = linku_store.latest_in_room(db, room_id, LinkuStatus.PENDING)
    return _state_view(db, connection, viewer_uid)


# =============================================================================
# Transitions
# =============================================================================


def propose(
    db: Session,
    bus: LiveBus,
    catalog: PostCatalog,
    requester_uid: int,
    room_id: int,
    target_uid: int,
    message: str | None = None,
    post_ref: int | None = None,
) -> LinkuStateView:
    """Propose a LinkU to the other participant and post a LINKU_PROPOSE card.

    An explicit post_ref must exist in the post catalog; otherwise the
    room's post is used.

    Raises:
        NotFoundError(E_ROOM_NOT_FOUND): Room doesn't exist.
        ForbiddenError(E_NOT_PARTICIPANT): Requester or target outside the room.
        InvalidRequestError(E_INVALID_REQUEST): Self-proposal or bad message.
        NotFoundError(E_NOT_FOUND): Explicit post_ref unknown to the catalog.
    """
    room = rooms.get_room_for_participant(db, room_id, requester_uid)
    if target_uid == requester_uid:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, "Cannot propose a LinkU to yourself"
        )
    if not room.has_participant(target_uid):
        raise ForbiddenError(ApiErrorCode.E_NOT_PARTICIPANT, "Target is not in this room")

    if message is None or not message.strip():
        content = PROPOSE_DEFAULT_TEXT
    else:
        content = chat.validate_content(message)

    if post_ref is not None:
        if catalog.get_post(post_ref) is None:
            raise NotFoundError(ApiErrorCode.E_NOT_FOUND, "Post not found")
    else:
        post_ref = room.post_ref

    with transaction(db):
        connection = linku_store.create_connection(
            db, room.id, post_ref, requester_uid, target_uid
        )
        chat.send_card(
            db,
            bus,
            room.id,
            requester_uid,
            target_uid,
            content,
            MessageKind.LINKU_PROPOSE,
            connection.id,
        )
        view = _state_view(db, connection, requester_uid)

    logger.info(
        "linku_proposed",
        connection_id=connection.id,
        room_id=room.id,
        requester_uid=requester_uid,
        target_uid=target_uid,
    )
    return view


def _lock_for_target(db: Session, connection_id: int, actor_uid: int) -> LinkuConnection:
    connection = linku_store.lock_connection(db, connection_id)
    if connection is None:
        raise NotFoundError(ApiErrorCode.E_LINKU_NOT_FOUND, "LinkU not found")
    if actor_uid != connection.target_uid:
        raise ForbiddenError(
            ApiErrorCode.E_NOT_AUTHORIZED, "Only the invited user can respond to this LinkU"
        )
    return connection


def accept(db: Session, bus: LiveBus, actor_uid: int, connection_id: int) -> LinkuStateView:
    """Accept a proposal (invitee only) and post a LINKU_ACCEPT card.

    Re-accepting an ongoing LinkU is allowed and keeps the first accepted_at.

    Raises:
        NotFoundError(E_LINKU_NOT_FOUND): No such connection.
        ForbiddenError(E_NOT_AUTHORIZED): Actor is not the invitee.
        ConflictError(E_CONFLICT): Rejected, completed, or changed concurrently.
    """
    try:
        with transaction(db):
            connection = _lock_for_target(db, connection_id, actor_uid)
            if connection.status == LinkuStatus.REJECTED.value or connection.completed:
                raise ConflictError(ApiErrorCode.E_CONFLICT, "LinkU can no longer be accepted")

            connection.status = LinkuStatus.ACCEPTED.value
            connection.completed = False
            if connection.accepted_at is None:
                connection.accepted_at = clock.utcnow()
            db.flush()

            chat.send_card(
                db,
                bus,
                connection.room_id,
                connection.target_uid,
                connection.requester_uid,
                ACCEPT_TEXT,
                MessageKind.LINKU_ACCEPT,
                connection.id,
            )
            view = _state_view(db, connection, actor_uid)
    except StaleDataError:
        raise ConflictError(ApiErrorCode.E_CONFLICT, "LinkU was changed concurrently") from None

    logger.info("linku_accepted", connection_id=connection_id, room_id=connection.room_id)
    return view


def reject(db: Session, bus: LiveBus, actor_uid: int, connection_id: int) -> LinkuStateView:
    """Reject a pending proposal (invitee only) and post a LINKU_REJECT card.

    Raises:
        NotFoundError(E_LINKU_NOT_FOUND): No such connection.
        ForbiddenError(E_NOT_AUTHORIZED): Actor is not the invitee.
        ConflictError(E_CONFLICT): Not pending, or changed concurrently.
    """
    try:
        with transaction(db):
            connection = _lock_for_target(db, connection_id, actor_uid)
            if connection.status != LinkuStatus.PENDING.value:
                raise ConflictError(ApiErrorCode.E_CONFLICT, "Only a pending LinkU can be rejected")

            connection.status = LinkuStatus.REJECTED.value
            connection.completed = False
            db.flush()

            chat.send_card(
                db,
                bus,
                connection.room_id,
                connection.target_uid,
                connection.requester_uid,
                REJECT_TEXT,
                MessageKind.LINKU_REJECT,
                connection.id,
            )
            view = _state_view(db, connection, actor_uid)
    except StaleDataError:
        raise ConflictError(ApiErrorCode.E_CONFLICT, "LinkU was changed concurrently") from None

    logger.info("linku_rejected", connection_id=connection_id, room_id=connection.room_id)
    return view


# =============================================================================
# Reviews
# =============================================================================


def _validate_review(relation: str, kindness: int, content: str | None) -> tuple[str, int, str]:
    try:
        relation_value = RelationRating(relation).value
    except ValueError:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, "relationRating must be BAD, GOOD or BEST"
        ) from None
    if not MIN_KINDNESS <= kindness <= MAX_KINDNESS:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST,
            f"kindnessScore must be between {MIN_KINDNESS} and {MAX_KINDNESS}",
        )
    content = content or ""
    max_length = get_settings().review_max_content_length
    if len(content) > max_length:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, f"Review content exceeds {max_length} characters"
        )
    return relation_value, kindness, content


def _review_view(review: LinkuReview, reviewer: User | None) -> ReviewView:
    return ReviewView(
        id=review.id,
        relation_rating=review.relation,
        kindness_score=review.kindness,
        content=review.content,
        reviewer_name=users.display_name(reviewer),
        reviewer_major=reviewer.major if reviewer is not None else None,
        created_at=review.created_at.strftime(REVIEW_TIME_FORMAT),
    )


def write_review(
    db: Session,
    bus: LiveBus,
    reviewer_uid: int,
    room_id: int,
    relation: str,
    kindness: int,
    content: str | None = None,
) -> ReviewView:
    """Review the proposer of the room's latest accepted LinkU.

    Completes the connection and posts a REVIEW_NOTICE card from the
    reviewer to the proposer.

    Raises:
        InvalidRequestError(E_INVALID_REQUEST): Bad relation, kindness or content.
        NotFoundError(E_ROOM_NOT_FOUND): Room doesn't exist.
        ForbiddenError(E_NOT_PARTICIPANT): Reviewer is not a participant.
        ConflictError(E_NO_ACTIVE_LINKU): No accepted LinkU in the room.
        ForbiddenError(E_NOT_AUTHORIZED): Reviewer is not the invitee.
        ConflictError(E_ALREADY_REVIEWED): The LinkU was already reviewed.
    """
    relation, kindness, content = _validate_review(relation, kindness, content)

    try:
        with transaction(db):
            rooms.get_room_for_participant(db, room_id, reviewer_uid)
            latest = linku_store.latest_in_room(db, room_id, LinkuStatus.ACCEPTED)
            if latest is None:
                raise ConflictError(
                    ApiErrorCode.E_NO_ACTIVE_LINKU, "No accepted LinkU in this room"
                )

            connection = linku_store.lock_connection(db, latest.id)
            if reviewer_uid != connection.target_uid:
                raise ForbiddenError(
                    ApiErrorCode.E_NOT_AUTHORIZED, "Only the invited user can review this LinkU"
                )
            if connection.completed or linku_store.review_exists(db, connection.id, reviewer_uid):
                raise ConflictError(
                    ApiErrorCode.E_ALREADY_REVIEWED, "This LinkU has already been reviewed"
                )

            review = linku_store.add_review(db, connection, relation, kindness, content)
            connection.completed = True
            db.flush()

            reviewer = users.get_user_or_404(db, reviewer_uid)
            chat.send_card(
                db,
                bus,
                room_id,
                reviewer_uid,
                connection.requester_uid,
                REVIEW_NOTICE_TEXT.format(name=users.display_name(reviewer)),
                MessageKind.REVIEW_NOTICE,
                connection.id,
            )
            view = _review_view(review, reviewer)
    except StaleDataError:
        raise ConflictError(ApiErrorCode.E_CONFLICT, "LinkU was changed concurrently") from None

    logger.info(
        "linku_reviewed",
        connection_id=connection.id,
        review_id=review.id,
        kindness=kindness,
    )
    return view


def list_reviews(db: Session, target_uid: int) -> list[ReviewView]:
    """Reviews received by a user, newest first."""
    reviews = linku_store.reviews_for_target(db, target_uid)
    reviewers = users.load_users(db, {r.reviewer_uid for r in reviews})
    return [_review_view(r, reviewers.get(r.reviewer_uid)) for r in reviews]


def list_reviews_by_handle(db: Session, handle: str) -> list[ReviewView]:
    """Raises NotFoundError(E_USER_NOT_FOUND) for unknown handles."""
    user = users.get_user_by_handle_or_404(db, handle)
    return list_reviews(db, user.id)


def delete_review(db: Session, actor_uid: int, review_id: int) -> None:
    """Delete a review (its author or its subject may do this).

    The connection stays completed.

    Raises:
        NotFoundError(E_REVIEW_NOT_FOUND): No such review.
        ForbiddenError(E_NOT_AUTHORIZED): Actor is neither reviewer nor target.
    """
    with transaction(db):
        review = linku_store.get_review(db, review_id)
        if review is None:
            raise NotFoundError(ApiErrorCode.E_REVIEW_NOT_FOUND, "Review not found")
        if actor_uid not in (review.reviewer_uid, review.target_uid):
            raise ForbiddenError(ApiErrorCode.E_NOT_AUTHORIZED, "Cannot delete this review")
        linku_store.delete_review(db, review_id)

    logger.info("linku_review_deleted", review_id=review_id, actor_uid=actor_uid)


# =============================================================================
# Ratings and completed LinkUs
# =============================================================================


def _average_one_decimal(total: int, count: int) -> float:
    """Mean rounded half up to one decimal (4.25 -> 4.3); 0.0 when count is 0."""
    if not count:
        return 0.0
    mean = Decimal(total) / Decimal(count)
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def rating_summary(db: Session, uid: int) -> RatingSummary:
    """Kindness average (one decimal) and LinkU counts for a user."""
    total, review_count = linku_store.kindness_stats(db, uid)
    return RatingSummary(
        average_score=_average_one_decimal(total, review_count),
        review_count=review_count,
        ongoing_count=linku_store.count_accepted(db, uid, completed=False),
        accepted_count=linku_store.count_accepted(db, uid),
    )


def rating_summary_for_user(db: Session, uid: int) -> RatingSummary:
    """Raises NotFoundError(E_USER_NOT_FOUND) for unknown uids."""
    users.get_user_or_404(db, uid)
    return rating_summary(db, uid)


def rating_summary_by_handle(db: Session, handle: str) -> RatingSummary:
    """Raises NotFoundError(E_USER_NOT_FOUND) for unknown handles."""
    user = users.get_user_by_handle_or_404(db, handle)
    return rating_summary(db, user.id)


def _format_period(start: datetime, end: datetime | None) -> str:
    start_text = start.strftime(DATE_FORMAT)
    if end is None:
        return f"{start_text} ~ ongoing"
    return f"{start_text} ~ {end.strftime(DATE_FORMAT)}"


def my_connections(db: Session, catalog: PostCatalog, uid: int) -> list[MyConnectionView]:
    """Completed LinkUs the user took part in, newest first."""
    connections = linku_store.completed_connections_for(db, uid)
    profiles = users.load_users(
        db, {c.requester_uid for c in connections} | {c.target_uid for c in connections}
    )

    titles: dict[int, str | None] = {}
    views = []
    for connection in connections:
        post_ref = connection.post_ref
        if post_ref is None:
            room = rooms.find_by_id(db, connection.room_id)
            post_ref = room.post_ref if room is not None else None
        if post_ref is not None and post_ref not in titles:
            titles[post_ref] = title_or_none(catalog, post_ref)

        start = connection.accepted_at or connection.created_at
        end = linku_store.latest_review_at(db, connection.id)
        proposer = profiles.get(connection.requester_uid)
        partner = profiles.get(connection.target_uid)

        views.append(
            MyConnectionView(
                connection_id=connection.id,
                room_id=connection.room_id,
                proposer_uid=connection.requester_uid,
                proposer_name=users.display_name(proposer),
                proposer_avatar=proposer.avatar_url if proposer else None,
                partner_uid=connection.target_uid,
                partner_name=users.display_name(partner),
                partner_avatar=partner.avatar_url if partner else None,
                post_ref=post_ref,
                post_title=titles.get(post_ref) if post_ref is not None else None,
                start_date=start.strftime(DATE_FORMAT),
                end_date=end.strftime(DATE_FORMAT) if end else None,
                period=_format_period(start, end),
            )
        )
    return views
