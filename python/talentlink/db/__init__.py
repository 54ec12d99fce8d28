"""Database module for TalentLink.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from talentlink.db.engine import create_db_engine, get_engine
from talentlink.db.models import (
    Base,
    ChatMessage,
    ChatRoom,
    ChatRoomExit,
    LinkuConnection,
    LinkuReview,
    LinkuStatus,
    MessageKind,
    RelationRating,
    User,
)
from talentlink.db.session import get_db, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "transaction",
    # Base
    "Base",
    # Enums
    "MessageKind",
    "LinkuStatus",
    "RelationRating",
    # Models
    "User",
    "ChatRoom",
    "ChatMessage",
    "ChatRoomExit",
    "LinkuConnection",
    "LinkuReview",
]
