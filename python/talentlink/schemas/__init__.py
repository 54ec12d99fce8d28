"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from talentlink.schemas.chat import (
    CreateRoomRequest,
    LastMessage,
    MessageView,
    RoomCard,
    RoomOut,
    SendMessageRequest,
    UserSummary,
)
from talentlink.schemas.common import ApiModel
from talentlink.schemas.linku import (
    LinkuStateView,
    MyConnectionView,
    ProposeRequest,
    RatingSummary,
    ReviewRequest,
    ReviewView,
)

__all__ = [
    "ApiModel",
    # Chat
    "CreateRoomRequest",
    "LastMessage",
    "MessageView",
    "RoomCard",
    "RoomOut",
    "SendMessageRequest",
    "UserSummary",
    # LinkU
    "LinkuStateView",
    "MyConnectionView",
    "ProposeRequest",
    "RatingSummary",
    "ReviewRequest",
    "ReviewView",
]
