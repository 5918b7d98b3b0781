"""
SQLAlchemy model for the append-only deletion audit log.
Represents the deletion_audit_log table in the database.
"""
import enum
import uuid

from sqlalchemy import Column, String, Enum, Text

from ephemera.models.base import Base, UTCDateTime, utc_now


class DeletionReason(str, enum.Enum):
    """Why a lifecycle transition was attempted."""
    EXPIRED = "expired"
    MANUAL = "manual"
    RETRY_EXHAUSTED = "retry-exhausted"


class DeletionStatus(str, enum.Enum):
    """Outcome of a lifecycle transition attempt."""
    SOFT_DELETED = "SOFT_DELETED"
    HARD_DELETED = "HARD_DELETED"
    FAILED_REMOTE = "FAILED_REMOTE"
    FAILED_METADATA = "FAILED_METADATA"


class DeletionAuditEntry(Base):
    """
    One row per lifecycle transition attempt. Never updated, never deleted.

    ``object_id`` is a weak reference (no foreign key) so entries outlive
    the purged object they describe.
    """
    __tablename__ = "deletion_audit_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    object_id = Column(String(36), nullable=False, index=True)
    owner_id = Column(String(255), nullable=True, index=True)
    key = Column(String(1024), nullable=False)
    display_name = Column(String(255), nullable=False)
    deleted_at = Column(UTCDateTime(), default=utc_now, nullable=False, index=True)
    reason = Column(
        Enum(DeletionReason, name="deletion_reason", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    status = Column(Enum(DeletionStatus, name="deletion_status"), nullable=False, index=True)
    error = Column(Text, nullable=True)

    def __repr__(self):
        return f"<DeletionAuditEntry(object_id={self.object_id}, status={self.status})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "object_id": self.object_id,
            "owner_id": self.owner_id,
            "key": self.key,
            "display_name": self.display_name,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "reason": self.reason.value if self.reason else None,
            "status": self.status.value if self.status else None,
            "error": self.error,
        }
