"""
API v1 Router

Organisation-scoped endpoints are prefixed with /organisations/{organisationId}.
"""

from fastapi import APIRouter

from . import memberships, organisations

router = APIRouter()

router.include_router(organisations.router, prefix="/organisations", tags=["Organisations"])
router.include_router(
    memberships.router,
    prefix="/organisations/{organisationId}/users",
    tags=["Organisation Users"],
)


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/organisations",
            "/organisations/{organisationId}",
            "/organisations/{organisationId}/users",
        ],
    }
