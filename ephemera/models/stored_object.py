"""
SQLAlchemy model for uploaded objects.
Represents the stored_objects table in the database.
"""
import enum
import uuid

from sqlalchemy import (
    Column,
    String,
    Enum,
    BigInteger,
    Index,
)

from ephemera.models.base import Base, UTCDateTime, utc_now


class ObjectStatus(str, enum.Enum):
    """Upload status enumeration."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class StoredObject(Base):
    """
    A fully assembled object in remote storage.

    A row exists only once its remote object has been confirmed. Once
    ``deleted_at`` is set the row is only ever touched again by the
    hard-delete path, which removes it.
    """
    __tablename__ = "stored_objects"

    # Primary Key
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Remote storage path (unique, immutable)
    key = Column(String(1024), unique=True, nullable=False)

    # File Information
    display_name = Column(String(255), nullable=False)
    mime_type = Column(String(255), nullable=False)
    size_bytes = Column(BigInteger, nullable=False, default=0)

    # Ownership
    owner_id = Column(String(255), nullable=False, index=True)

    # Lifecycle
    expiry = Column(UTCDateTime(), nullable=True, index=True)
    status = Column(
        Enum(ObjectStatus, name="object_status"),
        default=ObjectStatus.COMPLETED,
        nullable=False,
    )
    deleted_at = Column(UTCDateTime(), nullable=True, index=True)

    # Timestamps
    created_at = Column(UTCDateTime(), default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime(), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_stored_objects_expiry_deleted", "expiry", "deleted_at"),
    )

    def __repr__(self):
        return f"<StoredObject(id={self.id}, key={self.key}, deleted_at={self.deleted_at})>"
