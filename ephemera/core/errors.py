"""
Error taxonomy shared by the upload, storage and lifecycle layers.

Every error carries a stable ``kind`` string and the HTTP status the API
layer answers with, so callers can branch on the kind instead of on the
message text.
"""
from typing import Any, Dict, Optional


class EphemeraError(Exception):
    """Base class for all errors raised by the engine."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(EphemeraError):
    """Malformed request, disallowed MIME type or incomplete part list."""

    kind = "validation_failed"
    status_code = 400


class Unauthorized(EphemeraError):
    """Caller does not own the target key namespace or object."""

    kind = "unauthorized"
    status_code = 403


class ObjectNotFound(EphemeraError):
    kind = "not_found"
    status_code = 404


class AssemblyFailed(EphemeraError):
    """Multipart assembly was rejected by the storage backend."""

    kind = "assembly_failed"
    status_code = 502


class StorageError(EphemeraError):
    """Base class for errors reported by the object storage backend."""

    kind = "storage_error"
    status_code = 502


class TransientBackendError(StorageError):
    """Backend momentarily unavailable; safe to retry."""

    kind = "transient_backend_error"
    status_code = 503


class PermanentBackendError(StorageError):
    """Backend reports the target does not exist (already deleted, unknown session)."""

    kind = "permanent_backend_error"
    status_code = 502


class AuthorizationError(StorageError):
    """Capability issuance or a signed request was refused by the backend."""

    kind = "storage_authorization_error"
    status_code = 502
