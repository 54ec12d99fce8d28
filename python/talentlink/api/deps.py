"""FastAPI dependencies for route handlers.

Common dependencies like database sessions and app-scoped collaborators.
"""

from fastapi import Request

from talentlink.db.session import get_db, get_session_factory
from talentlink.services.live_bus import LiveBus
from talentlink.services.post_catalog import PostCatalog

__all__ = ["get_db", "get_live_bus", "get_post_catalog", "get_session_factory"]


def get_live_bus(request: Request) -> LiveBus:
    """Get the process-wide LiveBus from app state."""
    return request.app.state.live_bus


def get_post_catalog(request: Request) -> PostCatalog:
    """Get the configured PostCatalog from app state."""
    return request.app.state.post_catalog
