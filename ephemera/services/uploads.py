"""
Upload Session Manager

Issues scoped, time-limited write capabilities and turns a client-reported
completion into a durable StoredObject row.

Guarantee: a StoredObject row exists if and only if its remote object exists
and is fully assembled. No row is written before the backend confirms the
object, failed multipart sessions are aborted, and a remote object whose row
could not be written is removed again.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ephemera.core.config import Settings, settings as default_settings
from ephemera.core.errors import (
    AssemblyFailed,
    EphemeraError,
    ObjectNotFound,
    StorageError,
    Unauthorized,
    ValidationFailed,
)
from ephemera.metrics import (
    record_multipart_abort,
    record_upload_completed,
    record_upload_failed,
    record_upload_started,
)
from ephemera.models import ObjectStatus, StoredObject, utc_now
from ephemera.services.notifier import UPLOAD_COMPLETED, Notifier, NullNotifier
from ephemera.storage.client import ObjectStorageClient
from ephemera.storage.keys import build_object_key, key_belongs_to, owner_segment
from ephemera.storage.presigned import PresignedURL

logger = logging.getLogger(__name__)

SINGLE = "single"
MULTIPART = "multipart"

MAX_DISPLAY_NAME_LENGTH = 255


@dataclass
class UploadPlan:
    """
    Everything a client needs to transfer an upload.

    Single-shot plans carry one ``url``; multipart plans carry the session
    id and one capability per part.
    """
    key: str
    mode: str
    expires_in_seconds: int
    expires_at: datetime
    url: Optional[str] = None
    session_id: Optional[str] = None
    parts: List[PresignedURL] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "key": self.key,
            "mode": self.mode,
            "expires_in_seconds": self.expires_in_seconds,
            "expires_at": self.expires_at.isoformat(),
        }
        if self.mode == SINGLE:
            data["url"] = self.url
        else:
            data["session_id"] = self.session_id
            data["parts"] = [
                {"part_number": p.part_number, "url": p.url} for p in self.parts
            ]
        return data


@dataclass
class UploadMetadata:
    """Client-reported description of a finished upload."""
    display_name: str
    mime_type: str
    size_bytes: int
    expiry: Optional[datetime] = None


class UploadSessionManager:
    """
    Orchestrates single-shot and multipart upload sessions.

    Owner ids are trusted: the request layer authenticates before calling in.
    """

    def __init__(
        self,
        db: Session,
        storage: ObjectStorageClient,
        settings: Settings = default_settings,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize upload session manager

        Args:
            db: SQLAlchemy database session
            storage: Object storage client
            settings: Upload limits and capability lifetimes
            notifier: Event hook for completed uploads
            clock: Returns the current UTC time
        """
        self.db = db
        self.storage = storage
        self.settings = settings
        self.notifier = notifier or NullNotifier()
        self.clock = clock

    # ------------------------------------------------------------------
    # Begin
    # ------------------------------------------------------------------

    def begin_upload(
        self,
        owner_id: str,
        display_name: str,
        mime_type: str,
        declared_size: int,
        multipart: bool = False,
        part_count: Optional[int] = None,
        expires_in: Optional[int] = None,
    ) -> UploadPlan:
        """
        Reserve a key and issue write capabilities for it.

        No metadata row is created here; only a storage-side reservation
        (a multipart session) may exist afterwards.

        Raises:
            ValidationFailed: bad name, MIME type, size, part count or expiry
        """
        self._validate_owner(owner_id)
        self._validate_display_name(display_name)
        self._validate_mime_type(mime_type)
        self._validate_size(declared_size)
        expires = self._resolve_expiry(expires_in)

        if multipart:
            if part_count is None:
                raise ValidationFailed("part_count is required for multipart uploads")
            if not 1 <= part_count <= self.settings.MAX_MULTIPART_PARTS:
                raise ValidationFailed(
                    f"part_count must be between 1 and {self.settings.MAX_MULTIPART_PARTS}"
                )
        elif part_count is not None:
            raise ValidationFailed("part_count is only allowed for multipart uploads")

        key = build_object_key(owner_id, display_name)

        if not multipart:
            capability = self.storage.presign_put(key, expires=expires)
            record_upload_started(SINGLE)
            logger.info(f"Issued single upload capability for '{key}'", extra={"owner_id": owner_id})
            return UploadPlan(
                key=key,
                mode=SINGLE,
                url=capability.url,
                expires_in_seconds=capability.expires_in_seconds,
                expires_at=capability.expires_at,
            )

        session_id = self.storage.create_multipart_upload(key, mime_type)
        try:
            parts = [
                self.storage.presign_upload_part(key, session_id, number, expires=expires)
                for number in range(1, part_count + 1)
            ]
        except Exception:
            logger.error(f"Failed to presign parts for '{key}'; aborting session {session_id}")
            self._abort_quietly(key, session_id)
            raise

        record_upload_started(MULTIPART)
        logger.info(
            f"Opened multipart session {session_id} for '{key}' with {part_count} parts",
            extra={"owner_id": owner_id},
        )
        return UploadPlan(
            key=key,
            mode=MULTIPART,
            session_id=session_id,
            parts=parts,
            expires_in_seconds=parts[0].expires_in_seconds,
            expires_at=parts[0].expires_at,
        )

    # ------------------------------------------------------------------
    # Complete
    # ------------------------------------------------------------------

    def complete_upload(
        self,
        owner_id: str,
        key: str,
        metadata: UploadMetadata,
        multipart: bool = False,
        session_id: Optional[str] = None,
        parts: Optional[Sequence[Tuple[int, str]]] = None,
    ) -> StoredObject:
        """
        Finalize an upload and record it.

        For multipart uploads the parts are sorted by part number before
        assembly. A failed assembly aborts the session before the error is
        returned; any other unexpected failure also triggers a best-effort
        abort so no billable parts are left behind.

        Raises:
            ValidationFailed: malformed part list or metadata
            Unauthorized: key outside the caller's namespace
            AssemblyFailed: the backend rejected the assembly
        """
        mode = MULTIPART if multipart else SINGLE
        aborted = False
        try:
            self._validate_owner(owner_id)
            if not key_belongs_to(owner_id, key):
                raise Unauthorized("Key does not belong to the caller's namespace")

            ordered_parts = self._validate_completion(metadata, multipart, session_id, parts)

            existing = self.db.scalars(select(StoredObject).where(StoredObject.key == key)).first()
            if existing is not None:
                if existing.owner_id != owner_id:
                    raise Unauthorized("Key does not belong to the caller")
                logger.info(f"Upload '{key}' already completed; returning existing record")
                return existing

            expiry = self._resolve_object_expiry(metadata.expiry)

            if multipart:
                try:
                    self.storage.complete_multipart_upload(key, session_id, ordered_parts)
                except StorageError as e:
                    logger.error(f"Multipart assembly failed for '{key}': {e.message}")
                    self._abort_quietly(key, session_id)
                    aborted = True
                    raise AssemblyFailed(f"Multipart upload failed and aborted: {e.message}") from e
            elif self.storage.stat_object(key) is None:
                raise ValidationFailed("No uploaded object found for key")

            stored = self._create_record(owner_id, key, metadata, expiry)

        except Exception as e:
            record_upload_failed(mode, getattr(e, "kind", type(e).__name__))
            if multipart and session_id and not aborted and not isinstance(e, (ValidationFailed, Unauthorized)):
                # Safety net: never leave an unfinished session behind
                logger.warning(f"Aborting multipart session {session_id} after unexpected error: {e}")
                self._abort_quietly(key, session_id)
            raise

        record_upload_completed(mode)
        logger.info(
            f"Upload completed: {stored.display_name} (key: {key}, {stored.size_bytes} bytes)",
            extra={"object_id": stored.id, "owner_id": owner_id},
        )
        self.notifier.publish(UPLOAD_COMPLETED, {
            "object_id": stored.id,
            "owner_id": owner_id,
            "key": key,
            "display_name": stored.display_name,
            "size_bytes": stored.size_bytes,
        })
        return stored

    def _create_record(
        self,
        owner_id: str,
        key: str,
        metadata: UploadMetadata,
        expiry: Optional[datetime],
    ) -> StoredObject:
        """
        Write the StoredObject row for a confirmed remote object.

        If a concurrent completion committed a row for the same key first,
        that row is returned (or Unauthorized raised if another owner holds
        it) and the remote object is left alone. Any other write failure
        removes the remote object again so that no unreferenced object
        survives.
        """
        stored = StoredObject(
            key=key,
            display_name=metadata.display_name,
            mime_type=metadata.mime_type,
            size_bytes=metadata.size_bytes,
            owner_id=owner_id,
            expiry=expiry,
            status=ObjectStatus.COMPLETED,
        )
        try:
            self.db.add(stored)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            winner = self.db.scalars(select(StoredObject).where(StoredObject.key == key)).first()
            if winner is None:
                self._remove_unreferenced(key)
                raise
            if winner.owner_id != owner_id:
                raise Unauthorized("Key does not belong to the caller")
            logger.info(f"Upload '{key}' was completed concurrently; returning existing record")
            return winner
        except Exception:
            self.db.rollback()
            self._remove_unreferenced(key)
            raise

        self.db.refresh(stored)
        return stored

    def _remove_unreferenced(self, key: str) -> None:
        logger.error(f"Metadata write failed for '{key}'; removing remote object")
        result = self.storage.delete_objects([key])
        if result.failed:
            logger.error(f"Could not remove unreferenced remote object '{key}': {result.failed[key]}")

    # ------------------------------------------------------------------
    # Abort / download
    # ------------------------------------------------------------------

    def abort_upload(self, owner_id: str, key: str, session_id: str) -> bool:
        """
        Abort a multipart session on the client's request.

        Returns:
            True if a live session was aborted, False if it was already gone
        """
        self._validate_owner(owner_id)
        if not key_belongs_to(owner_id, key):
            raise Unauthorized("Key does not belong to the caller's namespace")
        if not session_id:
            raise ValidationFailed("session_id is required")

        aborted = self.storage.abort_multipart_upload(key, session_id)
        record_multipart_abort("aborted" if aborted else "already_gone")
        return aborted

    def issue_download(
        self,
        owner_id: str,
        object_id: str,
        expires_in: Optional[int] = None,
    ) -> PresignedURL:
        """
        Issue a read capability for an owned, live object.

        Raises:
            ObjectNotFound: unknown, not owned, or soft-deleted
        """
        obj = self.db.get(StoredObject, object_id)
        if obj is None or obj.owner_id != owner_id or obj.deleted_at is not None:
            raise ObjectNotFound(f"Object '{object_id}' not found")

        seconds = expires_in if expires_in is not None else self.settings.DOWNLOAD_EXPIRY_SECONDS
        return self.storage.presign_get(
            obj.key,
            expires=self._resolve_expiry(seconds),
            filename=obj.display_name,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_completion(
        self,
        metadata: UploadMetadata,
        multipart: bool,
        session_id: Optional[str],
        parts: Optional[Sequence[Tuple[int, str]]],
    ) -> List[Tuple[int, str]]:
        self._validate_display_name(metadata.display_name)
        self._validate_mime_type(metadata.mime_type)
        self._validate_size(metadata.size_bytes)

        if not multipart:
            if session_id is not None or parts is not None:
                raise ValidationFailed("session_id and parts are only allowed for multipart uploads")
            return []

        if not session_id:
            raise ValidationFailed("session_id is required for multipart uploads")
        if not parts:
            raise ValidationFailed("parts must be a non-empty list")

        try:
            ordered = sorted(((int(n), str(tag or "")) for n, tag in parts), key=lambda p: p[0])
        except (TypeError, ValueError):
            raise ValidationFailed("parts must be (part_number, integrity_tag) pairs")
        numbers = [n for n, _ in ordered]
        if any(not tag for _, tag in ordered):
            raise ValidationFailed("every part needs an integrity tag")
        if len(set(numbers)) != len(numbers):
            raise ValidationFailed("duplicate part numbers")
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValidationFailed("parts must be numbered contiguously from 1")
        if len(numbers) > self.settings.MAX_MULTIPART_PARTS:
            raise ValidationFailed(f"at most {self.settings.MAX_MULTIPART_PARTS} parts are allowed")
        return ordered

    @staticmethod
    def _validate_owner(owner_id: str) -> None:
        if not owner_id or not owner_id.strip():
            raise Unauthorized("Missing owner identity")
        try:
            owner_segment(owner_id)
        except ValueError:
            raise Unauthorized("Owner identity is not a valid namespace")

    @staticmethod
    def _validate_display_name(display_name: str) -> None:
        if not display_name or len(display_name) > MAX_DISPLAY_NAME_LENGTH:
            raise ValidationFailed(f"display name must be 1-{MAX_DISPLAY_NAME_LENGTH} characters")

    def _validate_mime_type(self, mime_type: str) -> None:
        if mime_type not in self.settings.ALLOWED_MIME_TYPES:
            raise ValidationFailed("Unsupported file type.", {"mime_type": mime_type})

    def _validate_size(self, size: int) -> None:
        if size is None or size < 0:
            raise ValidationFailed("size must be non-negative")
        if size > self.settings.MAX_UPLOAD_SIZE:
            raise ValidationFailed(f"size exceeds the maximum of {self.settings.MAX_UPLOAD_SIZE} bytes")

    def _resolve_expiry(self, expires_in: Optional[int]) -> Optional[timedelta]:
        if expires_in is None:
            return None
        low = self.settings.MIN_CAPABILITY_EXPIRY_SECONDS
        high = self.settings.MAX_CAPABILITY_EXPIRY_SECONDS
        if not low <= expires_in <= high:
            raise ValidationFailed(f"expires_in must be between {low} and {high} seconds")
        return timedelta(seconds=expires_in)

    def _resolve_object_expiry(self, expiry: Optional[datetime]) -> Optional[datetime]:
        now = self.clock()
        if expiry is None:
            if self.settings.DEFAULT_TTL_SECONDS:
                return now + timedelta(seconds=self.settings.DEFAULT_TTL_SECONDS)
            return None
        if expiry.tzinfo is None:
            raise ValidationFailed("expiry must include a timezone")
        if expiry <= now:
            raise ValidationFailed("expiry must be in the future")
        return expiry

    def _abort_quietly(self, key: str, session_id: str) -> None:
        """Best-effort abort; a failure is logged and never masks the caller's error."""
        try:
            aborted = self.storage.abort_multipart_upload(key, session_id)
            record_multipart_abort("aborted" if aborted else "already_gone")
        except EphemeraError as e:
            record_multipart_abort("failed")
            logger.error(f"Failed to abort multipart upload {session_id} for '{key}': {e.message}")
        except Exception as e:
            record_multipart_abort("failed")
            logger.error(f"Failed to abort multipart upload {session_id} for '{key}': {e}")
