"""LinkU collaboration schemas."""

from pydantic import Field

from talentlink.db.models import RelationRating
from talentlink.schemas.common import ApiModel

# =============================================================================
# Request Schemas
# =============================================================================


class ProposeRequest(ApiModel):
    """Propose a LinkU to the other participant of a room.

    `post_ref` defaults to the room's post when omitted.
    """

    target_uid: int
    message: str | None = None
    post_ref: int | None = None


class ReviewRequest(ApiModel):
    """Review of the proposer, written by the invitee."""

    relation_rating: RelationRating
    kindness_score: int = Field(ge=1, le=5)
    content: str | None = None


# =============================================================================
# Response Schemas
# =============================================================================


class LinkuStateView(ApiModel):
    """Viewer-relative LinkU state of a room."""

    linked: bool
    can_review: bool
    connection_id: int | None = None
    status: str | None = None


class ReviewView(ApiModel):
    """A review as listed on a profile. `created_at` is "YYYY-MM-DD HH:MM"."""

    id: int
    relation_rating: str
    kindness_score: int
    content: str
    reviewer_name: str | None = None
    reviewer_major: str | None = None
    created_at: str


class RatingSummary(ApiModel):
    """Aggregated rating of a user. `average_score` is rounded to one decimal."""

    average_score: float
    review_count: int
    ongoing_count: int
    accepted_count: int


class MyConnectionView(ApiModel):
    """A completed LinkU, from the point of view of either party.

    Dates are "YYYY-MM-DD"; `period` is "start ~ end" or "start ~ ongoing".
    """

    connection_id: int
    room_id: int
    proposer_uid: int
    proposer_name: str | None = None
    proposer_avatar: str | None = None
    partner_uid: int
    partner_name: str | None = None
    partner_avatar: str | None = None
    post_ref: int | None = None
    post_title: str | None = None
    start_date: str
    end_date: str | None = None
    period: str
