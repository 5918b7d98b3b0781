"""
Upload session endpoints.

Clients transfer bytes straight to object storage using the capabilities
returned here; this API only opens, completes and aborts sessions.
"""
from fastapi import APIRouter, Depends, status

from ephemera.api.deps import get_upload_manager
from ephemera.core.security import get_owner_id
from ephemera.schemas.upload import (
    AbortUploadRequest,
    AbortUploadResponse,
    CompleteUploadRequest,
    PartURL,
    PresignRequest,
    PresignResponse,
    StoredObjectResponse,
)
from ephemera.services.uploads import MULTIPART, UploadMetadata, UploadSessionManager

router = APIRouter()


@router.post("/presign", response_model=PresignResponse)
def presign_upload(
    request: PresignRequest,
    owner_id: str = Depends(get_owner_id),
    manager: UploadSessionManager = Depends(get_upload_manager),
):
    """
    Open an upload session.

    **Single-shot** (`multipart: false`): returns one PUT URL.

    **Multipart** (`multipart: true`, `parts: N`): returns a session id and
    one PUT URL per part. Each part response carries an ETag the client must
    report back on completion.
    """
    plan = manager.begin_upload(
        owner_id,
        display_name=request.file_name,
        mime_type=request.mime_type,
        declared_size=request.size,
        multipart=request.multipart,
        part_count=request.parts,
        expires_in=request.expires_in,
    )

    parts = None
    if plan.mode == MULTIPART:
        parts = [PartURL(part_number=p.part_number, url=p.url) for p in plan.parts]

    return PresignResponse(
        upload_type=plan.mode,
        key=plan.key,
        url=plan.url,
        session_id=plan.session_id,
        parts=parts,
        expires_in_seconds=plan.expires_in_seconds,
        expires_at=plan.expires_at,
    )


@router.post("/complete", response_model=StoredObjectResponse, status_code=status.HTTP_201_CREATED)
def complete_upload(
    request: CompleteUploadRequest,
    owner_id: str = Depends(get_owner_id),
    manager: UploadSessionManager = Depends(get_upload_manager),
):
    """
    Finalize an upload and record its metadata.

    Completing the same key again returns the existing record.
    """
    parts = None
    if request.parts is not None:
        parts = [(p.part_number, p.etag) for p in request.parts]

    return manager.complete_upload(
        owner_id,
        request.key,
        UploadMetadata(
            display_name=request.file_name,
            mime_type=request.mime_type,
            size_bytes=request.size,
            expiry=request.expiry,
        ),
        multipart=request.multipart,
        session_id=request.session_id,
        parts=parts,
    )


@router.post("/abort", response_model=AbortUploadResponse)
def abort_upload(
    request: AbortUploadRequest,
    owner_id: str = Depends(get_owner_id),
    manager: UploadSessionManager = Depends(get_upload_manager),
):
    """
    Abort a multipart session and discard its uploaded parts.

    Aborting a session that is already gone succeeds with `aborted: false`.
    """
    aborted = manager.abort_upload(owner_id, request.key, request.session_id)
    return AbortUploadResponse(aborted=aborted)
