"""Current user endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends

from talentlink.auth.middleware import Viewer, get_viewer
from talentlink.responses import success_response

router = APIRouter()


@router.get("/me")
async def get_me(viewer: Annotated[Viewer, Depends(get_viewer)]) -> dict:
    """Return the authenticated viewer's uid and login handle."""
    return success_response({"uid": viewer.uid, "handle": viewer.handle})
