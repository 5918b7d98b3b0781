"""
Pydantic schemas for upload, download and cleanup requests and responses.
Provides validation and serialization for API endpoints.
"""
from typing import Optional, List
from pydantic import BaseModel, Field, validator
from datetime import datetime

from ephemera.models import DeletionReason, DeletionStatus, ObjectStatus


# ========================================
# Request Schemas
# ========================================

class PresignRequest(BaseModel):
    """Request body for opening an upload session."""
    file_name: str = Field(..., min_length=1, max_length=255, description="Display name of the file")
    mime_type: str = Field(..., min_length=1, description="MIME type (must be allow-listed)")
    size: int = Field(..., ge=0, description="Declared size in bytes")
    multipart: bool = Field(default=False)
    parts: Optional[int] = Field(default=None, ge=1, le=10000, description="Number of parts (multipart only)")
    expires_in: Optional[int] = Field(default=None, ge=60, le=3600, description="Capability lifetime in seconds")

    @validator("parts", always=True)
    def validate_parts(cls, v, values):
        """parts is required for multipart uploads and forbidden otherwise."""
        if values.get("multipart") and v is None:
            raise ValueError("parts is required when multipart is true")
        if not values.get("multipart") and v is not None:
            raise ValueError("parts is only allowed when multipart is true")
        return v


class CompletedPart(BaseModel):
    part_number: int = Field(..., ge=1)
    etag: str = Field(..., min_length=1)


class CompleteUploadRequest(BaseModel):
    """Request body for finalizing an upload."""
    key: str = Field(..., min_length=1)
    multipart: bool = Field(default=False)
    session_id: Optional[str] = None
    parts: Optional[List[CompletedPart]] = None
    file_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1)
    size: int = Field(..., ge=0)
    expiry: Optional[datetime] = Field(default=None, description="When the object becomes eligible for deletion")


class AbortUploadRequest(BaseModel):
    key: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)


# ========================================
# Response Schemas
# ========================================

class PartURL(BaseModel):
    part_number: int
    url: str


class PresignResponse(BaseModel):
    """Upload plan returned to the client."""
    upload_type: str
    key: str
    url: Optional[str] = None
    session_id: Optional[str] = None
    parts: Optional[List[PartURL]] = None
    expires_in_seconds: int
    expires_at: datetime


class StoredObjectResponse(BaseModel):
    """Stored object representation."""
    id: str
    key: str
    display_name: str
    mime_type: str
    size_bytes: int
    owner_id: str
    status: ObjectStatus
    expiry: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AbortUploadResponse(BaseModel):
    aborted: bool


class DownloadResponse(BaseModel):
    download_url: str
    expires_in_seconds: int
    expires_at: datetime


class CleanupRunAccepted(BaseModel):
    """A cleanup run handed to the background worker."""
    status: str = "scheduled"
    run_id: str


class AuditEntryResponse(BaseModel):
    id: str
    object_id: str
    owner_id: Optional[str] = None
    key: str
    display_name: str
    deleted_at: datetime
    reason: DeletionReason
    status: DeletionStatus
    error: Optional[str] = None

    class Config:
        from_attributes = True
