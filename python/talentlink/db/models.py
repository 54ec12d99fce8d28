"""SQLAlchemy ORM models for TalentLink.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Enumerated columns are stored as TEXT guarded by CHECK constraints and
mirrored by Python str enums.

Entities reference each other by id only. There are no ORM relationships:
services load related rows explicitly so no attribute access triggers I/O.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# BIGINT identity on PostgreSQL; INTEGER PRIMARY KEY (rowid alias) on SQLite
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


class UtcDateTime(TypeDecorator):
    """Timezone-aware UTC timestamp.

    Values are converted to UTC on the way in. Backends that drop tz info
    (SQLite) hand back naive values, which are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to UtcDateTime column")
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class MessageKind(str, PyEnum):
    """Kinds of chat messages.

    TEXT is a plain chat line; every other kind is a LinkU card and
    must reference a connection.
    """

    TEXT = "TEXT"
    LINKU_PROPOSE = "LINKU_PROPOSE"
    LINKU_ACCEPT = "LINKU_ACCEPT"
    LINKU_REJECT = "LINKU_REJECT"
    REVIEW_NOTICE = "REVIEW_NOTICE"


class LinkuStatus(str, PyEnum):
    """LinkU connection lifecycle states.

    States:
        PENDING: Proposed, waiting for the invitee
        ACCEPTED: Invitee accepted; collaboration ongoing until reviewed
        REJECTED: Invitee declined (terminal)
    """

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class RelationRating(str, PyEnum):
    """Relation rating given in a LinkU review."""

    BAD = "BAD"
    GOOD = "GOOD"
    BEST = "BEST"


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """Local user profile.

    `handle` is the login handle issued by the identity service (JWT sub).
    The row is provisioned on first authenticated request.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    handle: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    major: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)


class ChatRoom(Base):
    """Two-party chat room.

    `a_uid` is the post owner and `b_uid` the initiator at creation time, but
    lookups are by unordered pair: `low_uid`/`high_uid` hold the sorted pair
    and carry the uniqueness constraint.
    """

    __tablename__ = "chat_rooms"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    post_ref: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    a_uid: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    b_uid: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    low_uid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    high_uid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("a_uid <> b_uid", name="ck_chat_rooms_distinct_participants"),
        CheckConstraint("low_uid < high_uid", name="ck_chat_rooms_pair_sorted"),
        UniqueConstraint("low_uid", "high_uid", name="uix_chat_rooms_pair"),
        Index("ix_chat_rooms_a_uid", "a_uid"),
        Index("ix_chat_rooms_b_uid", "b_uid"),
    )

    def has_participant(self, uid: int) -> bool:
        return uid == self.a_uid or uid == self.b_uid

    def other_participant(self, uid: int) -> int:
        return self.b_uid if uid == self.a_uid else self.a_uid


class ChatMessage(Base):
    """A chat message or LinkU card.

    Append-only: only `read_flag` ever changes, and only false -> true.
    """

    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    room_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False
    )
    sender_uid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    receiver_uid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    read_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    kind: Mapped[str] = mapped_column(Text, nullable=False, default=MessageKind.TEXT.value)
    linku_ref: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("linku_connections.id"), nullable=True
    )

    __table_args__ = (
        CheckConstraint("sender_uid <> receiver_uid", name="ck_chat_messages_not_self"),
        CheckConstraint(
            "kind IN ('TEXT', 'LINKU_PROPOSE', 'LINKU_ACCEPT', 'LINKU_REJECT', 'REVIEW_NOTICE')",
            name="ck_chat_messages_kind",
        ),
        CheckConstraint(
            "(kind = 'TEXT') = (linku_ref IS NULL)",
            name="ck_chat_messages_card_has_linku_ref",
        ),
        Index("ix_chat_messages_room_created", "room_id", "created_at", "id"),
        Index("ix_chat_messages_room_receiver_unread", "room_id", "receiver_uid", "read_flag"),
    )


class ChatRoomExit(Base):
    """One explicit "leave" by a user. Only the latest per (room, uid) is read."""

    __tablename__ = "chat_room_exits"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    room_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False
    )
    uid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    exited_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)

    __table_args__ = (Index("ix_chat_room_exits_room_uid_exited", "room_id", "uid", "exited_at"),)


class LinkuConnection(Base):
    """A LinkU collaboration proposal between the two participants of a room.

    `version` is an optimistic concurrency counter: a transition that
    commits against a stale version fails instead of overwriting.
    """

    __tablename__ = "linku_connections"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    room_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False
    )
    post_ref: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    requester_uid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    target_uid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=LinkuStatus.PENDING.value)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'ACCEPTED', 'REJECTED')",
            name="ck_linku_connections_status",
        ),
        CheckConstraint(
            "requester_uid <> target_uid",
            name="ck_linku_connections_distinct_parties",
        ),
        CheckConstraint(
            "(NOT completed) OR status = 'ACCEPTED'",
            name="ck_linku_connections_completed_only_accepted",
        ),
        Index("ix_linku_connections_room_status_created", "room_id", "status", "created_at"),
        Index("ix_linku_connections_requester", "requester_uid"),
        Index("ix_linku_connections_target", "target_uid"),
    )

    __mapper_args__ = {"version_id_col": version}


class LinkuReview(Base):
    """Review written by the invitee of a LinkU about the proposer."""

    __tablename__ = "linku_reviews"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    connection_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("linku_connections.id", ondelete="CASCADE"), nullable=False
    )
    reviewer_uid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    target_uid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    relation: Mapped[str] = mapped_column(Text, nullable=False)
    kindness: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("relation IN ('BAD', 'GOOD', 'BEST')", name="ck_linku_reviews_relation"),
        CheckConstraint("kindness BETWEEN 1 AND 5", name="ck_linku_reviews_kindness_range"),
        UniqueConstraint("connection_id", "reviewer_uid", name="uix_linku_reviews_once"),
        Index("ix_linku_reviews_target_created", "target_uid", "created_at"),
    )
