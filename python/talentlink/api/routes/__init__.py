"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from talentlink.api.routes.chat import router as chat_router
from talentlink.api.routes.health import router as health_router
from talentlink.api.routes.linku import router as linku_router
from talentlink.api.routes.me import router as me_router
from talentlink.api.routes.ws import router as ws_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(me_router, tags=["user"])
    api_router.include_router(chat_router)
    api_router.include_router(linku_router)
    api_router.include_router(ws_router)

    return api_router


__all__ = ["create_api_router"]
