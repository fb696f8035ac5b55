"""
API routes for dealsync.
"""

from fastapi import APIRouter

from dealsync.api.oauth import router as oauth_router
from dealsync.api.sync import router as sync_router

# Main API router
api_router = APIRouter(prefix="/api/v1")

# Include sub-routers
api_router.include_router(sync_router, tags=["Sync"])
api_router.include_router(oauth_router, tags=["OAuth"])

__all__ = ["api_router"]
