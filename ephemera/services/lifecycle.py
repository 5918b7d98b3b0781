"""
Lifecycle Scheduler

Drives every stored object through ACTIVE -> SOFT_DELETED -> PURGED:

- Stage 1 (soft delete): objects whose expiry has passed get ``deleted_at``
  set through a conditional update (only while it is still NULL).
- Stage 2 (hard delete): objects soft-deleted longer than the retention
  window are removed remotely in batches (retrying only the keys that
  failed), then their metadata rows are deleted.

Both stages are drain loops over id-ordered batches. No in-process locks are
held; concurrent schedulers converge because every mutation is conditional.
Every attempted transition leaves an entry in the deletion audit log.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ephemera.core.config import Settings, settings as default_settings
from ephemera.core.errors import EphemeraError, ObjectNotFound
from ephemera.metrics import (
    record_cleanup_run,
    record_deletion_failure,
    record_hard_delete,
    record_soft_delete,
)
from ephemera.models import DeletionReason, DeletionStatus, StoredObject, utc_now
from ephemera.services.audit import DeletionAuditLog, ObjectSnapshot
from ephemera.services.notifier import OBJECT_DELETED, Notifier, NullNotifier
from ephemera.services.retry import RetryPolicy
from ephemera.storage.client import ObjectStorageClient

logger = logging.getLogger(__name__)

# Outcomes of a single conditional soft delete
SOFT_DELETED = "soft_deleted"
ALREADY_HANDLED = "already_handled"
FAILED = "failed"


def new_run_id() -> str:
    """Short identifier tagging the log lines of one cleanup run."""
    return uuid.uuid4().hex[:12]


@dataclass
class HardDeleteStats:
    """Counters for one Stage 2 drain."""
    hard_deleted: int = 0
    failed_remote: int = 0
    failed_metadata: int = 0


@dataclass
class CleanupReport:
    """
    Result of a full cleanup run
    """
    run_id: str
    soft_deleted_count: int = 0
    hard_deleted_count: int = 0
    failed_remote_count: int = 0
    failed_metadata_count: int = 0
    duration_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            'run_id': self.run_id,
            'soft_deleted_count': self.soft_deleted_count,
            'hard_deleted_count': self.hard_deleted_count,
            'failed_remote_count': self.failed_remote_count,
            'failed_metadata_count': self.failed_metadata_count,
            'duration_seconds': round(self.duration_seconds, 2),
            'errors': self.errors,
        }


class LifecycleScheduler:
    """
    Two-stage TTL cleanup over the metadata store and object storage.

    Features:
    - Conditional soft delete (update only while ``deleted_at`` IS NULL)
    - Retention window before irreversible removal
    - Batched remote deletes, retrying only failed keys up to a ceiling
    - Remote deletion always precedes metadata deletion
    - Audit entry for every transition attempt
    """

    def __init__(
        self,
        db: Session,
        storage: ObjectStorageClient,
        settings: Settings = default_settings,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize lifecycle scheduler

        Args:
            db: SQLAlchemy database session
            storage: Object storage client
            settings: Batch size and retention configuration
            notifier: Event hook for deletions
            clock: Returns the current UTC time
            sleep: Blocking wait used between remote delete retries
            retry_policy: Overrides the policy derived from settings
        """
        self.db = db
        self.storage = storage
        self.notifier = notifier or NullNotifier()
        self.clock = clock
        self.sleep = sleep
        self.batch_size = settings.CLEANUP_BATCH_SIZE
        self.retention = timedelta(minutes=settings.SOFT_DELETE_RETENTION_MINUTES)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.audit = DeletionAuditLog(db)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run_cleanup(self, run_id: Optional[str] = None) -> CleanupReport:
        """
        Run Stage 1 then Stage 2.

        Never raises: per-item failures end up in the audit log and a stage
        that breaks off is logged and reported in ``errors``.
        """
        report = CleanupReport(run_id=run_id or new_run_id())
        start_time = time.time()
        logger.info("Starting full cleanup run...", extra={"run_id": report.run_id})

        try:
            report.soft_deleted_count = self.soft_delete_expired()
        except Exception as e:
            logger.exception("Unhandled error during soft delete stage", extra={"run_id": report.run_id})
            report.errors.append(f"soft delete stage: {e}")
            self._rollback_quietly()

        try:
            stats = self.hard_delete_soft_deleted()
            report.hard_deleted_count = stats.hard_deleted
            report.failed_remote_count = stats.failed_remote
            report.failed_metadata_count = stats.failed_metadata
        except Exception as e:
            logger.exception("Unhandled error during hard delete stage", extra={"run_id": report.run_id})
            report.errors.append(f"hard delete stage: {e}")
            self._rollback_quietly()

        report.duration_seconds = time.time() - start_time
        record_cleanup_run(report.duration_seconds)

        logger.info(
            f"Cleanup run finished: {report.soft_deleted_count} soft-deleted, "
            f"{report.hard_deleted_count} hard-deleted, "
            f"{report.failed_remote_count} remote failures, "
            f"{report.failed_metadata_count} metadata failures, "
            f"{report.duration_seconds:.2f}s",
            extra={"run_id": report.run_id},
        )
        return report

    # ------------------------------------------------------------------
    # Stage 1: soft delete
    # ------------------------------------------------------------------

    def soft_delete_expired(self) -> int:
        """
        Mark every expired, not yet soft-deleted object as soft-deleted.

        Returns:
            Number of objects this run transitioned
        """
        now = self.clock()
        processed = 0
        last_id: Optional[str] = None
        logger.info("Stage 1: marking expired objects for soft deletion...")

        while True:
            stmt = select(StoredObject).where(
                StoredObject.expiry < now,
                StoredObject.deleted_at.is_(None),
            )
            batch = self._fetch_batch(stmt, last_id)
            if not batch:
                break

            last_id = batch[-1].id
            logger.info(f"Found {len(batch)} expired objects to soft-delete")

            for snapshot in batch:
                if self._soft_delete_one(snapshot, now, DeletionReason.EXPIRED) == SOFT_DELETED:
                    processed += 1

        logger.info(f"Stage 1 finished: {processed} objects soft-deleted")
        return processed

    def request_deletion(self, owner_id: str, object_id: str) -> StoredObject:
        """
        Soft-delete an object on its owner's request.

        The object then follows the normal retention path to purge.

        Raises:
            ObjectNotFound: unknown object, not owned by the caller, or
                already soft-deleted (including by a concurrent run)
        """
        obj = self.db.get(StoredObject, object_id)
        if obj is None or obj.owner_id != owner_id or obj.deleted_at is not None:
            raise ObjectNotFound(f"Object '{object_id}' not found")

        outcome = self._soft_delete_one(ObjectSnapshot.of(obj), self.clock(), DeletionReason.MANUAL)
        if outcome == ALREADY_HANDLED:
            raise ObjectNotFound(f"Object '{object_id}' not found")
        if outcome == FAILED:
            raise EphemeraError(f"Could not mark object '{object_id}' for deletion")

        self.db.refresh(obj)
        return obj

    def _soft_delete_one(self, snapshot: ObjectSnapshot, now: datetime, reason: DeletionReason) -> str:
        log_extra = {"object_id": snapshot.id, "key": snapshot.key}
        try:
            result = self.db.execute(
                update(StoredObject)
                .where(StoredObject.id == snapshot.id, StoredObject.deleted_at.is_(None))
                .values(deleted_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # A concurrent run got there first; its audit entry stands
                self.db.rollback()
                logger.warning(
                    f"Object {snapshot.key} already soft-deleted by another process, skipping",
                    extra=log_extra,
                )
                return ALREADY_HANDLED

            self.audit.record(snapshot, reason, DeletionStatus.SOFT_DELETED, at=now)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error marking object {snapshot.key} as soft-deleted: {e}", extra=log_extra)
            self.audit.record_committed(snapshot, reason, DeletionStatus.FAILED_METADATA, error=str(e), at=now)
            record_deletion_failure("soft", DeletionStatus.FAILED_METADATA.value)
            return FAILED

        record_soft_delete(reason.value)
        logger.info(f"Soft-deleted object record: {snapshot.display_name} (key: {snapshot.key})", extra=log_extra)
        self._notify(snapshot, "soft", reason)
        return SOFT_DELETED

    # ------------------------------------------------------------------
    # Stage 2: hard delete
    # ------------------------------------------------------------------

    def hard_delete_soft_deleted(self) -> HardDeleteStats:
        """
        Purge objects soft-deleted before ``now - retention``.

        Remote deletion happens first; a metadata row is only removed once
        its remote object is confirmed gone. Rows whose remote delete keeps
        failing stay soft-deleted for the next run.
        """
        now = self.clock()
        cutoff = now - self.retention
        stats = HardDeleteStats()
        last_id: Optional[str] = None
        logger.info(f"Stage 2: hard deleting objects soft-deleted before {cutoff.isoformat()}...")

        while True:
            stmt = select(StoredObject).where(
                StoredObject.deleted_at.is_not(None),
                StoredObject.deleted_at < cutoff,
            )
            batch = self._fetch_batch(stmt, last_id)
            if not batch:
                break

            last_id = batch[-1].id
            logger.info(f"Found {len(batch)} soft-deleted objects to hard-delete")
            self._purge_batch(batch, now, stats)

        logger.info(
            f"Stage 2 finished: {stats.hard_deleted} hard-deleted, "
            f"{stats.failed_remote} remote failures, {stats.failed_metadata} metadata failures"
        )
        return stats

    def _purge_batch(self, batch: List[ObjectSnapshot], now: datetime, stats: HardDeleteStats) -> None:
        deleted_keys, failures, attempts = self._delete_remote_with_retry([s.key for s in batch])

        for snapshot in batch:
            if snapshot.key in deleted_keys:
                self._purge_row(snapshot, now, stats)
                continue

            error = (
                f"remote deletion failed after {attempts} attempt(s): "
                f"{failures.get(snapshot.key, 'unknown error')}"
            )
            logger.warning(
                f"Remote deletion failed for {snapshot.key}; keeping soft-deleted record",
                extra={"object_id": snapshot.id, "key": snapshot.key},
            )
            self.audit.record_committed(
                snapshot,
                DeletionReason.RETRY_EXHAUSTED,
                DeletionStatus.FAILED_REMOTE,
                error=error,
                at=now,
            )
            record_deletion_failure("hard", DeletionStatus.FAILED_REMOTE.value)
            stats.failed_remote += 1

    def _delete_remote_with_retry(self, keys: List[str]):
        """
        Batch-delete ``keys``, resubmitting only the failed ones.

        Returns:
            (confirmed deleted keys, last error per still-failing key, attempts made)
        """
        deleted = set()
        failures: Dict[str, str] = {}
        pending = list(keys)
        attempt = 0

        while pending:
            attempt += 1
            result = self.storage.delete_objects(pending)
            deleted.update(result.deleted)
            failures = {k: result.failed[k] for k in pending if k in result.failed}
            pending = list(failures)

            if not pending or not self.retry_policy.should_retry(attempt):
                break

            delay = self.retry_policy.delay_for(attempt)
            logger.warning(
                f"Remote delete retry {attempt}/{self.retry_policy.max_attempts - 1} "
                f"for {len(pending)} objects. Retrying in {delay:.1f}s..."
            )
            self.sleep(delay)

        return deleted, failures, attempt

    def _purge_row(self, snapshot: ObjectSnapshot, now: datetime, stats: HardDeleteStats) -> None:
        reason = self._hard_delete_reason(snapshot)
        log_extra = {"object_id": snapshot.id, "key": snapshot.key}
        try:
            result = self.db.execute(
                delete(StoredObject)
                .where(StoredObject.id == snapshot.id, StoredObject.deleted_at.is_not(None))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                logger.warning(f"Metadata row for {snapshot.key} already removed", extra=log_extra)
                self._record_metadata_failure(snapshot, reason, "metadata row already removed", now, stats)
                return

            self.audit.record(snapshot, reason, DeletionStatus.HARD_DELETED, at=now)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error hard deleting metadata row for {snapshot.key}: {e}", extra=log_extra)
            self._record_metadata_failure(snapshot, reason, str(e), now, stats)
            return

        stats.hard_deleted += 1
        record_hard_delete()
        logger.info(f"Hard deleted object: {snapshot.display_name} (key: {snapshot.key})", extra=log_extra)
        self._notify(snapshot, "hard", reason)

    def _record_metadata_failure(
        self,
        snapshot: ObjectSnapshot,
        reason: DeletionReason,
        error: str,
        now: datetime,
        stats: HardDeleteStats,
    ) -> None:
        self.audit.record_committed(snapshot, reason, DeletionStatus.FAILED_METADATA, error=error, at=now)
        record_deletion_failure("hard", DeletionStatus.FAILED_METADATA.value)
        stats.failed_metadata += 1

    @staticmethod
    def _hard_delete_reason(snapshot: ObjectSnapshot) -> DeletionReason:
        """Objects soft-deleted before reaching their expiry were deleted by hand."""
        if snapshot.expiry is None or (
            snapshot.deleted_at is not None and snapshot.deleted_at < snapshot.expiry
        ):
            return DeletionReason.MANUAL
        return DeletionReason.EXPIRED

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fetch_batch(self, stmt, last_id: Optional[str]) -> List[ObjectSnapshot]:
        """
        Fetch the next id-ordered batch after ``last_id`` as detached snapshots.
        """
        if last_id is not None:
            stmt = stmt.where(StoredObject.id > last_id)
        stmt = stmt.order_by(StoredObject.id.asc()).limit(self.batch_size)

        rows = self.db.scalars(stmt).all()
        batch = [ObjectSnapshot.of(row) for row in rows]
        # Conditional writes bypass the identity map; later reads must hit the database
        for row in rows:
            self.db.expunge(row)
        self.db.rollback()
        return batch

    def _notify(self, snapshot: ObjectSnapshot, stage: str, reason: DeletionReason) -> None:
        self.notifier.publish(OBJECT_DELETED, {
            "object_id": snapshot.id,
            "owner_id": snapshot.owner_id,
            "key": snapshot.key,
            "stage": stage,
            "reason": reason.value,
        })

    def _rollback_quietly(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Rollback failed: {e}")


def run_cleanup_once(
    session_factory: Callable[[], Session],
    storage: ObjectStorageClient,
    settings: Settings = default_settings,
    notifier: Optional[Notifier] = None,
    run_id: Optional[str] = None,
) -> CleanupReport:
    """
    Run one cleanup pass in a fresh database session.

    Used by the scheduling triggers (CLI loop, background task), which do
    not share a session with any request.
    """
    with session_factory() as db:
        scheduler = LifecycleScheduler(db, storage, settings=settings, notifier=notifier)
        return scheduler.run_cleanup(run_id=run_id)
