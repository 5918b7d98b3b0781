"""
API v1 router aggregation.
"""
from fastapi import APIRouter
from ephemera.api.v1.endpoints import uploads, files, cleanup

api_router = APIRouter()

# Upload sessions (presign / complete / abort)
api_router.include_router(uploads.router, prefix="/uploads", tags=["uploads"])

# Stored objects (download capability, deletion request)
api_router.include_router(files.router, prefix="/files", tags=["files"])

# Operator endpoints for the lifecycle scheduler
api_router.include_router(cleanup.router, prefix="/cleanup", tags=["cleanup"])

__all__ = ["api_router"]
