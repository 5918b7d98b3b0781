"""
Deletion audit log.

Append-only record of every lifecycle transition attempt. Entries are
written in the caller's transaction (``record`` only adds to the session)
so a transition and its audit row commit or roll back together.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from ephemera.models import (
    DeletionAuditEntry,
    DeletionReason,
    DeletionStatus,
    StoredObject,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectSnapshot:
    """
    Detached copy of the fields the lifecycle engine needs from a row.

    Snapshots stay readable after rollbacks and after the row is purged.
    """
    id: str
    key: str
    display_name: str
    owner_id: Optional[str]
    expiry: Optional[datetime]
    deleted_at: Optional[datetime]

    @classmethod
    def of(cls, obj: StoredObject) -> "ObjectSnapshot":
        return cls(
            id=obj.id,
            key=obj.key,
            display_name=obj.display_name,
            owner_id=obj.owner_id,
            expiry=obj.expiry,
            deleted_at=obj.deleted_at,
        )


AuditSubject = Union[StoredObject, ObjectSnapshot]


class DeletionAuditLog:
    """Writer and query interface for ``deletion_audit_log``."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        subject: AuditSubject,
        reason: DeletionReason,
        status: DeletionStatus,
        error: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> DeletionAuditEntry:
        """
        Add an audit entry describing ``subject`` to the current transaction.

        The object's identifying fields are copied so the entry stays
        meaningful after the object row is purged.
        """
        entry = DeletionAuditEntry(
            object_id=subject.id,
            owner_id=subject.owner_id,
            key=subject.key,
            display_name=subject.display_name,
            deleted_at=at or utc_now(),
            reason=reason,
            status=status,
            error=error,
        )
        self.db.add(entry)
        return entry

    def record_committed(
        self,
        subject: AuditSubject,
        reason: DeletionReason,
        status: DeletionStatus,
        error: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Optional[DeletionAuditEntry]:
        """
        Write a standalone entry in its own transaction.

        Used for failure entries, typically after the main transaction was
        rolled back. A failure to write the entry is logged, not raised.
        """
        try:
            entry = self.record(subject, reason, status, error=error, at=at)
            self.db.commit()
            return entry
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to write {status.value} audit entry for {subject.key}: {e}",
                extra={"object_id": subject.id},
            )
            return None

    def list_entries(
        self,
        object_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        status: Optional[DeletionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[DeletionAuditEntry]:
        """Query entries, newest first."""
        stmt = select(DeletionAuditEntry)
        if object_id is not None:
            stmt = stmt.where(DeletionAuditEntry.object_id == object_id)
        if owner_id is not None:
            stmt = stmt.where(DeletionAuditEntry.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(DeletionAuditEntry.status == status)
        stmt = (
            stmt.order_by(DeletionAuditEntry.deleted_at.desc(), DeletionAuditEntry.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.scalars(stmt))
