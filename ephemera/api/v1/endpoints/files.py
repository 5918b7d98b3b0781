"""
Stored object endpoints: download capabilities and deletion requests.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ephemera.api.deps import get_scheduler, get_upload_manager
from ephemera.core.security import get_owner_id
from ephemera.schemas.upload import DownloadResponse, StoredObjectResponse
from ephemera.services.lifecycle import LifecycleScheduler
from ephemera.services.uploads import UploadSessionManager

router = APIRouter()


@router.get("/{object_id}/download", response_model=DownloadResponse)
def get_download_url(
    object_id: str,
    expires_in: Optional[int] = Query(default=None, ge=60, le=3600, description="URL lifetime in seconds"),
    owner_id: str = Depends(get_owner_id),
    manager: UploadSessionManager = Depends(get_upload_manager),
):
    """
    Get a presigned download URL for an owned object.

    Soft-deleted objects are reported as not found.
    """
    capability = manager.issue_download(owner_id, object_id, expires_in=expires_in)
    return DownloadResponse(
        download_url=capability.url,
        expires_in_seconds=capability.expires_in_seconds,
        expires_at=capability.expires_at,
    )


@router.delete("/{object_id}", response_model=StoredObjectResponse, status_code=status.HTTP_202_ACCEPTED)
def delete_file(
    object_id: str,
    owner_id: str = Depends(get_owner_id),
    scheduler: LifecycleScheduler = Depends(get_scheduler),
):
    """
    Request deletion of an owned object.

    The object is soft-deleted right away and purged by a later cleanup run
    once the retention window has passed.
    """
    return scheduler.request_deletion(owner_id, object_id)
