"""
Unit tests for the deletion audit log.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from ephemera.models import DeletionReason, DeletionStatus
from ephemera.services.audit import DeletionAuditLog, ObjectSnapshot


@pytest.fixture
def audit(db):
    return DeletionAuditLog(db)


@pytest.mark.unit
class TestDeletionAuditLog:
    def test_entry_copies_object_fields(self, audit, db, make_object, clock):
        obj = make_object(name="notes.txt")

        audit.record(obj, DeletionReason.EXPIRED, DeletionStatus.SOFT_DELETED, at=clock.now)
        db.commit()

        entry = audit.list_entries(object_id=obj.id)[0]
        assert entry.key == obj.key
        assert entry.owner_id == "user-1"
        assert entry.display_name == "notes.txt"
        assert entry.deleted_at == clock.now
        assert entry.reason == DeletionReason.EXPIRED
        assert entry.error is None

    def test_entries_outlive_the_object(self, audit, db, make_object):
        obj = make_object()
        snapshot = ObjectSnapshot.of(obj)
        db.delete(obj)
        db.commit()

        audit.record_committed(snapshot, DeletionReason.MANUAL, DeletionStatus.HARD_DELETED)

        entries = audit.list_entries(object_id=snapshot.id)
        assert len(entries) == 1
        assert entries[0].key == snapshot.key

    def test_record_is_part_of_caller_transaction(self, audit, db, make_object):
        obj = make_object()

        audit.record(obj, DeletionReason.EXPIRED, DeletionStatus.SOFT_DELETED)
        db.rollback()

        assert audit.list_entries() == []

    def test_record_committed_swallows_write_failures(self, audit, db, make_object):
        snapshot = ObjectSnapshot.of(make_object())

        with patch.object(db, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
            entry = audit.record_committed(snapshot, DeletionReason.EXPIRED, DeletionStatus.FAILED_METADATA)

        assert entry is None
        assert audit.list_entries() == []

    def test_list_filters_and_ordering(self, audit, db, make_object, clock):
        first = ObjectSnapshot.of(make_object(name="a.txt"))
        second = ObjectSnapshot.of(make_object(name="b.txt", owner_id="user-2"))

        audit.record(first, DeletionReason.EXPIRED, DeletionStatus.SOFT_DELETED, at=clock.now)
        audit.record(first, DeletionReason.EXPIRED, DeletionStatus.HARD_DELETED, at=clock.now + timedelta(minutes=11))
        audit.record(second, DeletionReason.RETRY_EXHAUSTED, DeletionStatus.FAILED_REMOTE,
                     error="remote deletion failed", at=clock.now + timedelta(minutes=12))
        db.commit()

        entries = audit.list_entries()
        assert [e.status for e in entries] == [
            DeletionStatus.FAILED_REMOTE,
            DeletionStatus.HARD_DELETED,
            DeletionStatus.SOFT_DELETED,
        ]
        assert [e.status for e in audit.list_entries(object_id=first.id)] == [
            DeletionStatus.HARD_DELETED,
            DeletionStatus.SOFT_DELETED,
        ]
        assert [e.key for e in audit.list_entries(owner_id="user-2")] == [second.key]
        assert len(audit.list_entries(status=DeletionStatus.SOFT_DELETED)) == 1
        assert len(audit.list_entries(limit=1, offset=1)) == 1

    def test_to_dict(self, audit, db, make_object):
        obj = make_object()
        entry = audit.record(obj, DeletionReason.RETRY_EXHAUSTED, DeletionStatus.FAILED_REMOTE, error="x")
        db.commit()

        data = entry.to_dict()
        assert data["reason"] == "retry-exhausted"
        assert data["status"] == "FAILED_REMOTE"
        assert data["error"] == "x"
