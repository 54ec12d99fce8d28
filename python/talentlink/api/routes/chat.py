"""Chat room and message API routes.

Routes are transport-only: each calls exactly one service function.
All routes require authentication.
Response envelope: {"data": ...}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from talentlink.api.deps import get_db
from talentlink.auth.middleware import Viewer, get_viewer
from talentlink.responses import success_response
from talentlink.schemas.chat import CreateRoomRequest
from talentlink.services import chat as chat_service

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/rooms")
def create_room(
    body: CreateRoomRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Open the chat room with a post's owner, reusing the pair's room if any.

    Errors:
        E_SELF_CHAT (400): The viewer is the owner.
        E_USER_NOT_FOUND (404): Owner doesn't exist.
    """
    result = chat_service.create_room(
        db,
        viewer_uid=viewer.uid,
        post_id=body.post_id,
        owner_uid=body.owner_uid,
        owner_handle=body.owner_handle,
    )
    return success_response(result.to_wire())


@router.get("/rooms/{room_id}/messages")
def get_messages(
    room_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Viewer-projected history, oldest first. Marks inbound messages read."""
    history = chat_service.get_history(db, viewer.uid, room_id)
    return success_response([m.to_wire() for m in history])


@router.get("/my-rooms")
def list_my_rooms(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """The viewer's rooms, most recent activity first."""
    cards = chat_service.list_my_rooms(db, viewer.uid)
    return success_response([c.to_wire() for c in cards])


@router.delete("/rooms/{room_id}/leave")
def leave_room(
    room_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Leave a room: the viewer's history restarts from now."""
    chat_service.leave_room(db, viewer.uid, room_id)
    return success_response({"roomId": room_id, "left": True})
