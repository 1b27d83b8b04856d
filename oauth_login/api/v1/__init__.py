"""API v1 route aggregation.

This module composes all v1 sub-routers into a single `api_router`.
Each sub-router is expected to declare its own `prefix` and `tags`.
"""
from fastapi import APIRouter

from .auth import router as auth_router
from .oauth import router as oauth_router


ROUTERS = [
    auth_router,
    oauth_router,
]


api_router = APIRouter()
for router in ROUTERS:
    api_router.include_router(router)

__all__ = ["api_router"]
