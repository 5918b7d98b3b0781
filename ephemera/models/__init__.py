"""
SQLAlchemy models for the Ephemera application.
"""
from ephemera.models.base import Base, UTCDateTime, utc_now
from ephemera.models.stored_object import StoredObject, ObjectStatus
from ephemera.models.deletion_audit import DeletionAuditEntry, DeletionReason, DeletionStatus

__all__ = [
    "Base",
    "UTCDateTime",
    "utc_now",
    "StoredObject",
    "ObjectStatus",
    "DeletionAuditEntry",
    "DeletionReason",
    "DeletionStatus",
]
