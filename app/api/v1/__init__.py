"""
API v1 Router
"""

from fastapi import APIRouter
from . import roles, users

router = APIRouter()

router.include_router(roles.router, prefix="/roles", tags=["Roles"])
router.include_router(users.router, prefix="/users")


@router.get("/", tags=["API"])
async def api_root():
    """API root — returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/roles",
            "/users",
            "/users/batch",
            "/users/statistics",
            "/users/{userId}/sessions",
            "/users/{userId}/activity-logs",
        ],
    }
