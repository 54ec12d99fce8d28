"""Chat and LinkU schema - users, chat rooms, messages, exits, LinkU connections, reviews

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Rooms are unique per unordered pair via the sorted (low_uid, high_uid)
columns. Messages are ordered per room by (created_at, id). LinkU
connections carry an optimistic-lock version counter.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False)


def upgrade() -> None:
    # ==========================================================================
    # users table
    # ==========================================================================
    op.create_table(
        "users",
        _id_column(),
        sa.Column("handle", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("major", sa.Text(), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("handle", name="uq_users_handle"),
    )

    # ==========================================================================
    # chat_rooms table
    # ==========================================================================
    op.create_table(
        "chat_rooms",
        _id_column(),
        sa.Column("post_ref", sa.BigInteger(), nullable=True),
        sa.Column("a_uid", sa.BigInteger(), nullable=False),
        sa.Column("b_uid", sa.BigInteger(), nullable=False),
        sa.Column("low_uid", sa.BigInteger(), nullable=False),
        sa.Column("high_uid", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["a_uid"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["b_uid"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("a_uid <> b_uid", name="ck_chat_rooms_distinct_participants"),
        sa.CheckConstraint("low_uid < high_uid", name="ck_chat_rooms_pair_sorted"),
        sa.UniqueConstraint("low_uid", "high_uid", name="uix_chat_rooms_pair"),
    )
    op.create_index("ix_chat_rooms_a_uid", "chat_rooms", ["a_uid"])
    op.create_index("ix_chat_rooms_b_uid", "chat_rooms", ["b_uid"])

    # ==========================================================================
    # chat_room_exits table
    # ==========================================================================
    op.create_table(
        "chat_room_exits",
        _id_column(),
        sa.Column("room_id", sa.BigInteger(), nullable=False),
        sa.Column("uid", sa.BigInteger(), nullable=False),
        sa.Column("exited_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["room_id"], ["chat_rooms.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_chat_room_exits_room_uid_exited",
        "chat_room_exits",
        ["room_id", "uid", "exited_at"],
    )

    # ==========================================================================
    # linku_connections table
    # ==========================================================================
    op.create_table(
        "linku_connections",
        _id_column(),
        sa.Column("room_id", sa.BigInteger(), nullable=False),
        sa.Column("post_ref", sa.BigInteger(), nullable=True),
        sa.Column("requester_uid", sa.BigInteger(), nullable=False),
        sa.Column("target_uid", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("completed", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["room_id"], ["chat_rooms.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'ACCEPTED', 'REJECTED')",
            name="ck_linku_connections_status",
        ),
        sa.CheckConstraint(
            "requester_uid <> target_uid",
            name="ck_linku_connections_distinct_parties",
        ),
        sa.CheckConstraint(
            "(NOT completed) OR status = 'ACCEPTED'",
            name="ck_linku_connections_completed_only_accepted",
        ),
    )
    op.create_index(
        "ix_linku_connections_room_status_created",
        "linku_connections",
        ["room_id", "status", "created_at"],
    )
    op.create_index("ix_linku_connections_requester", "linku_connections", ["requester_uid"])
    op.create_index("ix_linku_connections_target", "linku_connections", ["target_uid"])

    # ==========================================================================
    # chat_messages table
    # ==========================================================================
    op.create_table(
        "chat_messages",
        _id_column(),
        sa.Column("room_id", sa.BigInteger(), nullable=False),
        sa.Column("sender_uid", sa.BigInteger(), nullable=False),
        sa.Column("receiver_uid", sa.BigInteger(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("read_flag", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("kind", sa.Text(), server_default="TEXT", nullable=False),
        sa.Column("linku_ref", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["room_id"], ["chat_rooms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["linku_ref"], ["linku_connections.id"]),
        sa.CheckConstraint("sender_uid <> receiver_uid", name="ck_chat_messages_not_self"),
        sa.CheckConstraint(
            "kind IN ('TEXT', 'LINKU_PROPOSE', 'LINKU_ACCEPT', 'LINKU_REJECT', 'REVIEW_NOTICE')",
            name="ck_chat_messages_kind",
        ),
        sa.CheckConstraint(
            "(kind = 'TEXT') = (linku_ref IS NULL)",
            name="ck_chat_messages_card_has_linku_ref",
        ),
    )
    op.create_index(
        "ix_chat_messages_room_created", "chat_messages", ["room_id", "created_at", "id"]
    )
    op.create_index(
        "ix_chat_messages_room_receiver_unread",
        "chat_messages",
        ["room_id", "receiver_uid", "read_flag"],
    )

    # ==========================================================================
    # linku_reviews table
    # ==========================================================================
    op.create_table(
        "linku_reviews",
        _id_column(),
        sa.Column("connection_id", sa.BigInteger(), nullable=False),
        sa.Column("reviewer_uid", sa.BigInteger(), nullable=False),
        sa.Column("target_uid", sa.BigInteger(), nullable=False),
        sa.Column("relation", sa.Text(), nullable=False),
        sa.Column("kindness", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), server_default="", nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["connection_id"], ["linku_connections.id"], ondelete="CASCADE"
        ),
        sa.CheckConstraint(
            "relation IN ('BAD', 'GOOD', 'BEST')", name="ck_linku_reviews_relation"
        ),
        sa.CheckConstraint("kindness BETWEEN 1 AND 5", name="ck_linku_reviews_kindness_range"),
        sa.UniqueConstraint("connection_id", "reviewer_uid", name="uix_linku_reviews_once"),
    )
    op.create_index(
        "ix_linku_reviews_target_created", "linku_reviews", ["target_uid", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("linku_reviews")
    op.drop_table("chat_messages")
    op.drop_table("linku_connections")
    op.drop_table("chat_room_exits")
    op.drop_table("chat_rooms")
    op.drop_table("users")
