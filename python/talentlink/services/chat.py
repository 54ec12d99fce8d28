"""Chat core: room lifecycle, message writes, and per-viewer projections.

Each participant sees the room through their own cut (latest leave
timestamp): history, unread counts and room visibility are computed
against it, while the shared message log stays untouched.

Service functions correspond 1:1 with route handlers (send_card is the
exception: it is called by the LinkU core inside its own transaction).
"""

from datetime import UTC, datetime

from sqlalchemy.orm import Session

from talentlink import clock
from talentlink.config import get_settings
from talentlink.db.models import ChatMessage, ChatRoom, MessageKind
from talentlink.db.session import transaction
from talentlink.errors import ApiErrorCode, ForbiddenError, InvalidRequestError
from talentlink.logging import get_logger
from talentlink.schemas.chat import LastMessage, MessageView, RoomCard, RoomOut
from talentlink.services import exits, linku_store, messages, rooms, users
from talentlink.services.live_bus import LiveBus, publish_after_commit, room_topic

logger = get_logger(__name__)

# Sorts rooms without any message after every room that has one
_NO_ACTIVITY = datetime.min.replace(tzinfo=UTC)


# =============================================================================
# Helpers
# =============================================================================


def validate_content(content: str | None, max_length: int | None = None) -> str:
    """Reject blank or oversized message content. Returns content unchanged.

    Raises:
        InvalidRequestError(E_INVALID_REQUEST): Blank or too long.
    """
    if max_length is None:
        max_length = get_settings().chat_max_content_length
    if content is None or not content.strip():
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "Message content is required")
    if len(content) > max_length:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST,
            f"Message content exceeds {max_length} characters",
        )
    return content


def _check_parties(room: ChatRoom, sender_uid: int, receiver_uid: int) -> None:
    if sender_uid == receiver_uid:
        raise InvalidRequestError(ApiErrorCode.E_SELF_SEND, "Cannot send a message to yourself")
    if not room.has_participant(sender_uid) or not room.has_participant(receiver_uid):
        raise ForbiddenError(ApiErrorCode.E_NOT_PARTICIPANT, "Not a participant of this room")


def to_message_view(message: ChatMessage, linku_status: str | None = None) -> MessageView:
    return MessageView(
        id=message.id,
        room_id=message.room_id,
        sender_uid=message.sender_uid,
        receiver_uid=message.receiver_uid,
        content=message.content,
        created_at=message.created_at,
        kind=message.kind,
        linku_id=message.linku_ref,
        linku_status=linku_status,
    )


def _broadcast(db: Session, bus: LiveBus, view: MessageView) -> None:
    publish_after_commit(db, bus, room_topic(view.room_id), view.to_wire())


# =============================================================================
# Rooms
# =============================================================================


def create_room(
    db: Session,
    viewer_uid: int,
    post_id: int,
    owner_uid: int | None = None,
    owner_handle: str | None = None,
) -> RoomOut:
    """Open the viewer's room with a post owner (get-or-create by pair).

    Raises:
        NotFoundError(E_USER_NOT_FOUND): Owner doesn't exist.
        InvalidRequestError(E_SELF_CHAT): Viewer is the owner.
    """
    with transaction(db):
        if owner_uid is not None:
            owner = users.get_user_or_404(db, owner_uid)
        else:
            owner = users.get_user_by_handle_or_404(db, owner_handle or "")

        room = rooms.get_or_create(db, post_id, owner.id, viewer_uid)

    return RoomOut(
        room_id=room.id,
        post_id=room.post_ref,
        owner_uid=room.a_uid,
        other_uid=room.b_uid,
    )


def list_my_rooms(db: Session, viewer_uid: int) -> list[RoomCard]:
    """Room cards for the viewer, most recent activity first.

    A room the viewer left stays hidden until a message arrives after the
    cut. The preview shows the latest message of the whole room; the unread
    count only covers messages after the cut.
    """
    visible: list[tuple[ChatRoom, ChatMessage | None, int]] = []
    for room in rooms.rooms_for_uid(db, viewer_uid):
        cut = exits.latest(db, room.id, viewer_uid)
        if cut is not None and not messages.exists_after(db, room.id, cut):
            continue
        newest = messages.latest(db, room.id)
        unread = messages.count_unread(db, room.id, viewer_uid, cut)
        visible.append((room, newest, unread))

    profiles = users.load_users(db, {room.other_participant(viewer_uid) for room, _, _ in visible})

    cards = []
    for room, newest, unread in visible:
        other = profiles[room.other_participant(viewer_uid)]
        cards.append(
            RoomCard(
                room_id=room.id,
                other_user=users.to_summary(other),
                last_message=(
                    LastMessage(content=newest.content, created_at=newest.created_at)
                    if newest is not None
                    else None
                ),
                unread=unread,
            )
        )

    cards.sort(
        key=lambda c: (c.last_message.created_at if c.last_message else _NO_ACTIVITY, c.room_id),
        reverse=True,
    )
    return cards


def leave_room(db: Session, viewer_uid: int, room_id: int) -> None:
    """Record a leave: the viewer's history restarts after this instant.

    Nothing is broadcast; the other participant's view is unchanged.
    """
    with transaction(db):
        rooms.get_room_for_participant(db, room_id, viewer_uid)
        rooms.lock_room(db, room_id)
        now = clock.utcnow()
        newest = messages.latest(db, room_id)
        if newest is not None and newest.created_at > now:
            now = newest.created_at
        exits.record(db, room_id, viewer_uid, now)

    logger.info("chat_room_left", room_id=room_id, uid=viewer_uid)


# =============================================================================
# Messages
# =============================================================================


def send_text(
    db: Session,
    bus: LiveBus,
    sender_uid: int,
    room_id: int,
    receiver_uid: int,
    content: str,
) -> MessageView:
    """Persist a TEXT message and broadcast it once committed.

    Raises:
        InvalidRequestError(E_INVALID_REQUEST): Blank or oversized content.
        NotFoundError(E_ROOM_NOT_FOUND): Room doesn't exist.
        InvalidRequestError(E_SELF_SEND): Sender and receiver are the same.
        ForbiddenError(E_NOT_PARTICIPANT): Either party is outside the room.
    """
    validate_content(content)

    with transaction(db):
        room = rooms.get_room_or_404(db, room_id)
        _check_parties(room, sender_uid, receiver_uid)
        message = messages.append(db, room.id, sender_uid, receiver_uid, content)
        view = to_message_view(message)
        _broadcast(db, bus, view)

    logger.info("message_sent", room_id=room_id, message_id=view.id)
    return view


def send_card(
    db: Session,
    bus: LiveBus,
    room_id: int,
    sender_uid: int,
    receiver_uid: int,
    content: str,
    kind: MessageKind,
    linku_ref: int,
) -> MessageView:
    """Persist a LinkU card within the caller's transaction.

    The broadcast carries the connection's status as of this write, except
    for review notices, which carry none. Does not commit.

    Raises:
        ValueError: kind is TEXT or linku_ref is missing (programming error).
        NotFoundError / ForbiddenError / InvalidRequestError: As send_text.
    """
    if kind == MessageKind.TEXT:
        raise ValueError("send_card requires a LinkU card kind")
    if linku_ref is None:
        raise ValueError("send_card requires linku_ref")

    room = rooms.get_room_or_404(db, room_id)
    _check_parties(room, sender_uid, receiver_uid)
    message = messages.append(db, room.id, sender_uid, receiver_uid, content, kind, linku_ref)

    status = None
    if kind != MessageKind.REVIEW_NOTICE:
        status = linku_store.status_of(db, linku_ref)

    view = to_message_view(message, status)
    _broadcast(db, bus, view)
    return view


def get_history(db: Session, viewer_uid: int, room_id: int) -> list[MessageView]:
    """Viewer-projected history; marks the viewer's inbound messages read.

    Reading and marking happen in one transaction under the room lock that
    appends also take, so nothing can be marked read without being returned.

    Raises:
        NotFoundError(E_ROOM_NOT_FOUND): Room doesn't exist.
        ForbiddenError(E_NOT_PARTICIPANT): Viewer is not a participant.
    """
    with transaction(db):
        rooms.get_room_for_participant(db, room_id, viewer_uid)
        rooms.lock_room(db, room_id)
        cut = exits.latest(db, room_id, viewer_uid)
        history = messages.list_after(db, room_id, cut)
        marked = messages.mark_read(db, room_id, viewer_uid)

        statuses = linku_store.statuses_of(
            db, {m.linku_ref for m in history if m.linku_ref is not None}
        )

    if marked:
        logger.debug("messages_marked_read", room_id=room_id, count=marked)

    return [
        to_message_view(m, statuses.get(m.linku_ref) if m.linku_ref is not None else None)
        for m in history
    ]


def unread_count(db: Session, viewer_uid: int, room_id: int) -> int:
    """Unread messages for the viewer in one room, counted after their cut."""
    rooms.get_room_for_participant(db, room_id, viewer_uid)
    cut = exits.latest(db, room_id, viewer_uid)
    return messages.count_unread(db, room_id, viewer_uid, cut)
