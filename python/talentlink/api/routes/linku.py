"""LinkU API routes.

Routes are transport-only: each calls exactly one service function.
All routes require authentication.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from talentlink.api.deps import get_db, get_live_bus, get_post_catalog
from talentlink.auth.middleware import Viewer, get_viewer
from talentlink.responses import success_response
from talentlink.schemas.linku import ProposeRequest, ReviewRequest
from talentlink.services import linku as linku_service
from talentlink.services.live_bus import LiveBus
from talentlink.services.post_catalog import PostCatalog

router = APIRouter(prefix="/chat", tags=["linku"])


# =============================================================================
# State machine
# =============================================================================


@router.get("/rooms/{room_id}/linku")
def get_linku_state(
    room_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Current LinkU state of the room for the viewer."""
    state = linku_service.get_state(db, viewer.uid, room_id)
    return success_response(state.to_wire())


@router.post("/rooms/{room_id}/linku/propose")
def propose_linku(
    room_id: int,
    body: ProposeRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    bus: Annotated[LiveBus, Depends(get_live_bus)],
    catalog: Annotated[PostCatalog, Depends(get_post_catalog)],
) -> dict:
    """Propose a LinkU to the other participant.

    Errors:
        E_NOT_PARTICIPANT (403): Viewer or target is not in the room.
        E_NOT_FOUND (404): Explicit postRef unknown.
    """
    state = linku_service.propose(
        db,
        bus,
        catalog,
        requester_uid=viewer.uid,
        room_id=room_id,
        target_uid=body.target_uid,
        message=body.message,
        post_ref=body.post_ref,
    )
    return success_response(state.to_wire())


@router.post("/linku/{connection_id}/accept")
def accept_linku(
    connection_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    bus: Annotated[LiveBus, Depends(get_live_bus)],
) -> dict:
    """Accept a proposal. Only the invitee may accept.

    Errors:
        E_NOT_AUTHORIZED (403): Viewer is not the invitee.
        E_CONFLICT (409): Already rejected or completed.
    """
    state = linku_service.accept(db, bus, viewer.uid, connection_id)
    return success_response(state.to_wire())


@router.post("/linku/{connection_id}/reject")
def reject_linku(
    connection_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    bus: Annotated[LiveBus, Depends(get_live_bus)],
) -> dict:
    """Reject a pending proposal. Only the invitee may reject."""
    state = linku_service.reject(db, bus, viewer.uid, connection_id)
    return success_response(state.to_wire())


# =============================================================================
# Reviews
# =============================================================================


@router.post("/rooms/{room_id}/linku/reviews")
def write_review(
    room_id: int,
    body: ReviewRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    bus: Annotated[LiveBus, Depends(get_live_bus)],
) -> dict:
    """Review the proposer of the room's latest accepted LinkU.

    Errors:
        E_NO_ACTIVE_LINKU (409): No accepted LinkU in the room.
        E_NOT_AUTHORIZED (403): Viewer is not the invitee.
        E_ALREADY_REVIEWED (409): Already reviewed.
    """
    review = linku_service.write_review(
        db,
        bus,
        reviewer_uid=viewer.uid,
        room_id=room_id,
        relation=body.relation_rating,
        kindness=body.kindness_score,
        content=body.content,
    )
    return success_response(review.to_wire())


@router.get("/linku/reviews/me")
def list_my_reviews(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Reviews the viewer received, newest first."""
    reviews = linku_service.list_reviews(db, viewer.uid)
    return success_response([r.to_wire() for r in reviews])


@router.get("/linku/reviews/user-id/{handle}")
def list_user_reviews(
    handle: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Reviews a user (by login handle) received, newest first."""
    reviews = linku_service.list_reviews_by_handle(db, handle)
    return success_response([r.to_wire() for r in reviews])


@router.delete("/linku/reviews/{review_id}")
def delete_review(
    review_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Delete a review written by or about the viewer."""
    linku_service.delete_review(db, viewer.uid, review_id)
    return success_response({"id": review_id, "deleted": True})


# =============================================================================
# Ratings and completed LinkUs
# =============================================================================


@router.get("/linku/rating/me")
def get_my_rating(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    summary = linku_service.rating_summary(db, viewer.uid)
    return success_response(summary.to_wire())


@router.get("/linku/rating/user-id/{handle}")
def get_rating_by_handle(
    handle: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    summary = linku_service.rating_summary_by_handle(db, handle)
    return success_response(summary.to_wire())


@router.get("/linku/rating/{uid}")
def get_rating_by_uid(
    uid: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    summary = linku_service.rating_summary_for_user(db, uid)
    return success_response(summary.to_wire())


@router.get("/linku/connections/me")
def list_my_connections(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    catalog: Annotated[PostCatalog, Depends(get_post_catalog)],
) -> dict:
    """Completed LinkUs the viewer took part in, newest first."""
    connections = linku_service.my_connections(db, catalog, viewer.uid)
    return success_response([c.to_wire() for c in connections])
