"""
Pydantic schemas for request/response validation.
"""
from ephemera.schemas.upload import (
    PresignRequest,
    CompletedPart,
    CompleteUploadRequest,
    AbortUploadRequest,
    PartURL,
    PresignResponse,
    StoredObjectResponse,
    AbortUploadResponse,
    DownloadResponse,
    CleanupRunAccepted,
    AuditEntryResponse,
)

__all__ = [
    "PresignRequest",
    "CompletedPart",
    "CompleteUploadRequest",
    "AbortUploadRequest",
    "PartURL",
    "PresignResponse",
    "StoredObjectResponse",
    "AbortUploadResponse",
    "DownloadResponse",
    "CleanupRunAccepted",
    "AuditEntryResponse",
]
