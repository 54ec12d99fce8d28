"""Chat room and message schemas."""

from datetime import datetime

from pydantic import Field, model_validator

from talentlink.schemas.common import ApiModel

# =============================================================================
# Request Schemas
# =============================================================================


class CreateRoomRequest(ApiModel):
    """Open (or reopen) the chat room with a post's owner.

    The owner may be given by uid or by login handle; one is required.
    """

    post_id: int
    owner_uid: int | None = None
    owner_handle: str | None = None

    @model_validator(mode="after")
    def require_owner(self) -> "CreateRoomRequest":
        if self.owner_uid is None and not (self.owner_handle and self.owner_handle.strip()):
            raise ValueError("ownerUid or ownerHandle is required")
        return self


class SendMessageRequest(ApiModel):
    """Payload of a `chat.send` stream event."""

    room_id: int
    receiver_uid: int
    content: str = Field(min_length=1)


# =============================================================================
# Response Schemas
# =============================================================================


class RoomOut(ApiModel):
    """The stored room for a pair. `post_id` is the room's first post context."""

    room_id: int
    post_id: int | None
    owner_uid: int
    other_uid: int


class MessageView(ApiModel):
    """A chat message as seen by clients (history and live events).

    `linku_status` is the connection's current status for cards; TEXT
    messages carry neither `linku_id` nor `linku_status`.
    """

    id: int
    room_id: int
    sender_uid: int
    receiver_uid: int
    content: str
    created_at: datetime
    kind: str
    linku_id: int | None = None
    linku_status: str | None = None


class UserSummary(ApiModel):
    """Public profile bits shown next to a room or review."""

    uid: int
    handle: str
    name: str | None = None
    major: str | None = None
    avatar: str | None = None


class LastMessage(ApiModel):
    content: str
    created_at: datetime


class RoomCard(ApiModel):
    """One entry of the viewer's room list."""

    room_id: int
    other_user: UserSummary
    last_message: LastMessage | None = None
    unread: int
