"""
Object Storage Client

Thin wrapper over the MinIO SDK issuing the operations the upload and
lifecycle layers need:
- Scoped, time-limited PUT/GET capabilities (presigned URLs)
- Multipart session create / part capability / complete / abort
- Batched deletes, chunked to the backend's per-request key limit

The client holds no per-request state. One instance is built at process
start and passed explicitly to its users.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

from minio import Minio
from minio.datatypes import Part
from minio.deleteobjects import DeleteObject
from minio.error import MinioException, S3Error, ServerError
from urllib3.exceptions import HTTPError as TransportError

from ephemera.core.config import Settings
from ephemera.core.errors import (
    AuthorizationError,
    PermanentBackendError,
    StorageError,
    TransientBackendError,
)
from ephemera.core.minio_client import get_minio_client
from ephemera.metrics import record_storage_operation
from ephemera.storage.keys import sanitize_filename
from ephemera.storage.presigned import PresignedURL

logger = logging.getLogger(__name__)

# S3 error codes meaning "the target is already gone"
MISSING_CODES = frozenset({"NoSuchKey", "NoSuchUpload", "NoSuchVersion"})
# S3 error codes meaning the credentials/signature were refused
AUTH_CODES = frozenset({
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
})


@dataclass
class ObjectStat:
    """Subset of object metadata returned by a HEAD request."""
    key: str
    size: int
    etag: Optional[str] = None
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None


@dataclass
class BatchDeleteResult:
    """
    Outcome of a batched delete.

    ``failed`` maps each undeleted key to the backend's error description.
    """
    deleted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def all_deleted(self) -> bool:
        return not self.failed


def translate_error(operation: str, exc: Exception) -> StorageError:
    """
    Map a MinIO/transport exception onto the storage error taxonomy.
    """
    if isinstance(exc, StorageError):
        return exc
    if isinstance(exc, S3Error):
        message = f"{operation} failed: {exc.code}: {exc.message}"
        if exc.code in MISSING_CODES:
            return PermanentBackendError(message, {"code": exc.code})
        if exc.code in AUTH_CODES:
            return AuthorizationError(message, {"code": exc.code})
        return TransientBackendError(message, {"code": exc.code})
    if isinstance(exc, (ServerError, MinioException, TransportError, OSError)):
        return TransientBackendError(f"{operation} failed: {exc}")
    return TransientBackendError(f"{operation} failed: {exc!r}")


def content_disposition(filename: str) -> str:
    """
    Build an attachment Content-Disposition value (RFC 6266).

    ``filename`` carries an ASCII-safe fallback, ``filename*`` the
    percent-encoded UTF-8 original.
    """
    fallback = sanitize_filename(filename)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


class ObjectStorageClient:
    """
    MinIO-backed object storage client.

    Features:
    - Capability lifetimes clamped into a configured range
    - Multipart sessions driven entirely through presigned part URLs
    - Idempotent abort and delete (missing targets are not errors)
    - Backend failures translated into Transient/Permanent/Authorization errors
    """

    def __init__(
        self,
        minio_client: Minio,
        bucket_name: str,
        default_expiry: timedelta = timedelta(minutes=15),
        min_expiry: timedelta = timedelta(minutes=1),
        max_expiry: timedelta = timedelta(hours=1),
        max_delete_keys: int = 1000,
    ):
        """
        Initialize object storage client

        Args:
            minio_client: MinIO client instance
            bucket_name: Target bucket name
            default_expiry: Capability lifetime used when a call names none
            min_expiry: Shortest lifetime a caller may request
            max_expiry: Longest lifetime a caller may request
            max_delete_keys: Backend limit on keys per delete request
        """
        if max_delete_keys < 1:
            raise ValueError("max_delete_keys must be >= 1")

        self.client = minio_client
        self.bucket_name = bucket_name
        self.default_expiry = default_expiry
        self.min_expiry = min_expiry
        self.max_expiry = max_expiry
        self.max_delete_keys = max_delete_keys

        logger.info(
            f"ObjectStorageClient initialized for bucket '{bucket_name}' "
            f"(default expiry: {default_expiry}, delete chunk: {max_delete_keys})"
        )

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def resolve_expiry(self, expires: Optional[timedelta] = None) -> timedelta:
        """Return the requested lifetime clamped into the allowed range."""
        expires = expires or self.default_expiry
        if expires > self.max_expiry:
            logger.warning(f"Expiry time {expires} exceeds maximum {self.max_expiry}, capping")
            return self.max_expiry
        if expires < self.min_expiry:
            logger.warning(f"Expiry time {expires} below minimum {self.min_expiry}, raising")
            return self.min_expiry
        return expires

    def presign_put(self, key: str, expires: Optional[timedelta] = None) -> PresignedURL:
        """
        Generate a capability for a single-shot PUT of ``key``.
        """
        expires = self.resolve_expiry(expires)
        with self._operation("presign_put"):
            url = self.client.presigned_put_object(self.bucket_name, key, expires=expires)

        logger.info(f"Generated upload URL for '{key}' (expires in {expires.total_seconds() / 60:.1f}m)")
        return PresignedURL.issued_now(url, key, "PUT", expires)

    def presign_get(
        self,
        key: str,
        expires: Optional[timedelta] = None,
        filename: Optional[str] = None,
    ) -> PresignedURL:
        """
        Generate a capability for downloading ``key``.

        Args:
            key: Object key in bucket
            expires: URL expiration time
            filename: Optional attachment filename for the response
        """
        expires = self.resolve_expiry(expires)
        response_headers = None
        if filename:
            response_headers = {
                'response-content-disposition': content_disposition(filename)
            }

        with self._operation("presign_get"):
            url = self.client.presigned_get_object(
                self.bucket_name,
                key,
                expires=expires,
                response_headers=response_headers,
            )

        logger.info(f"Generated download URL for '{key}' (expires in {expires.total_seconds() / 60:.1f}m)")
        return PresignedURL.issued_now(url, key, "GET", expires)

    # ------------------------------------------------------------------
    # Multipart sessions
    # ------------------------------------------------------------------

    def create_multipart_upload(self, key: str, mime_type: str) -> str:
        """
        Open a multipart session for ``key``.

        Returns:
            The backend's upload (session) id
        """
        with self._operation("create_multipart"):
            # minio exposes no public multipart API; these private calls are stable across 7.x
            upload_id = self.client._create_multipart_upload(
                self.bucket_name,
                key,
                {"Content-Type": mime_type},
            )

        logger.info(f"Opened multipart upload {upload_id} for '{key}'")
        return upload_id

    def presign_upload_part(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        expires: Optional[timedelta] = None,
    ) -> PresignedURL:
        """Generate a capability for uploading one part of a multipart session."""
        expires = self.resolve_expiry(expires)
        with self._operation("presign_part"):
            url = self.client.get_presigned_url(
                "PUT",
                self.bucket_name,
                key,
                expires=expires,
                extra_query_params={
                    "uploadId": upload_id,
                    "partNumber": str(part_number),
                },
            )
        return PresignedURL.issued_now(url, key, "PUT", expires, part_number=part_number)

    def complete_multipart_upload(
        self,
        key: str,
        upload_id: str,
        parts: Sequence[Tuple[int, str]],
    ) -> None:
        """
        Assemble a multipart session from ``(part_number, etag)`` pairs.

        The backend requires parts in strictly ascending order, so they are
        sorted here regardless of the order the caller supplied.
        """
        ordered = sorted(parts, key=lambda p: p[0])
        with self._operation("complete_multipart"):
            # Private minio API, see create_multipart_upload
            self.client._complete_multipart_upload(
                self.bucket_name,
                key,
                upload_id,
                [Part(number, etag) for number, etag in ordered],
            )

        logger.info(f"Completed multipart upload {upload_id} for '{key}' ({len(ordered)} parts)")

    def abort_multipart_upload(self, key: str, upload_id: str) -> bool:
        """
        Abort a multipart session, discarding any uploaded parts.

        Returns:
            True if the session was aborted, False if it no longer existed.
            Aborting twice is therefore safe.
        """
        try:
            with self._operation("abort_multipart"):
                # Private minio API, see create_multipart_upload
                self.client._abort_multipart_upload(self.bucket_name, key, upload_id)
        except PermanentBackendError:
            logger.info(f"Multipart upload {upload_id} for '{key}' already gone")
            return False

        logger.info(f"Aborted multipart upload {upload_id} for '{key}'")
        return True

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    def stat_object(self, key: str) -> Optional[ObjectStat]:
        """Return object metadata, or None if the object does not exist."""
        try:
            with self._operation("stat"):
                obj = self.client.stat_object(self.bucket_name, key)
        except PermanentBackendError:
            return None

        return ObjectStat(
            key=key,
            size=obj.size or 0,
            etag=obj.etag,
            content_type=obj.content_type,
            last_modified=obj.last_modified,
        )

    def delete_objects(self, keys: Iterable[str]) -> BatchDeleteResult:
        """
        Delete keys in batches of at most ``max_delete_keys``.

        Keys the backend reports as already missing count as deleted. When a
        whole request fails, every key of that chunk is reported failed.
        """
        keys = list(dict.fromkeys(keys))
        result = BatchDeleteResult()

        for start in range(0, len(keys), self.max_delete_keys):
            chunk = keys[start:start + self.max_delete_keys]
            failed = self._delete_chunk(chunk)
            result.failed.update(failed)
            result.deleted.extend(k for k in chunk if k not in failed)

        if result.failed:
            logger.warning(
                f"Batch delete: {len(result.deleted)} deleted, {len(result.failed)} failed"
            )
        elif keys:
            logger.info(f"Batch delete: {len(result.deleted)} objects deleted")

        return result

    def _delete_chunk(self, chunk: List[str]) -> Dict[str, str]:
        failed: Dict[str, str] = {}
        start_time = time.time()
        try:
            # remove_objects is lazy; errors only surface while iterating
            errors = self.client.remove_objects(
                self.bucket_name,
                [DeleteObject(k) for k in chunk],
            )
            for err in errors:
                if err.code in MISSING_CODES:
                    continue
                failed[err.name] = f"{err.code}: {err.message}"
        except Exception as e:
            error = translate_error("delete_objects", e)
            logger.error(f"Batch delete request failed for {len(chunk)} keys: {error.message}")
            failed = {k: error.message for k in chunk}

        record_storage_operation("delete_objects", not failed, time.time() - start_time)
        return failed

    def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist yet."""
        with self._operation("ensure_bucket"):
            if not self.client.bucket_exists(self.bucket_name):
                self.client.make_bucket(self.bucket_name)
                logger.info(f"Created bucket '{self.bucket_name}'")

    def _operation(self, name: str) -> "_StorageOperation":
        return _StorageOperation(name)


class _StorageOperation:
    """
    Context manager timing a backend call and translating its errors.
    """

    def __init__(self, name: str):
        self.name = name
        self.start_time = 0.0

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc, tb):
        duration = time.time() - self.start_time
        record_storage_operation(self.name, exc is None, duration)
        if exc is None or not isinstance(exc, Exception):
            return False
        error = translate_error(self.name, exc)
        if error is exc:
            return False
        raise error from exc


def build_storage_client(settings: Settings) -> ObjectStorageClient:
    """
    Build the process-wide storage client from settings.
    """
    return ObjectStorageClient(
        get_minio_client(settings),
        settings.MINIO_BUCKET,
        default_expiry=timedelta(seconds=settings.CAPABILITY_EXPIRY_SECONDS),
        min_expiry=timedelta(seconds=settings.MIN_CAPABILITY_EXPIRY_SECONDS),
        max_expiry=timedelta(seconds=settings.MAX_CAPABILITY_EXPIRY_SECONDS),
        max_delete_keys=settings.DELETE_OBJECTS_MAX_KEYS,
    )
