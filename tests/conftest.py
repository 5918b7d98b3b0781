"""
Pytest configuration and shared fixtures for Ephemera tests.
"""
import os
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Dict, Generator, Iterable, List, Optional, Sequence, Tuple

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("CLEANUP_ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("CLEANUP_RETRY_DELAY_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from ephemera.api.deps import get_notifier, get_session_factory, get_storage
from ephemera.core.config import Settings
from ephemera.core.errors import PermanentBackendError, TransientBackendError
from ephemera.db import get_db
from ephemera.main import app
from ephemera.models import Base, StoredObject
from ephemera.services.notifier import Notifier
from ephemera.storage.client import BatchDeleteResult, ObjectStat
from ephemera.storage.keys import build_object_key
from ephemera.storage.presigned import PresignedURL


# Test Database Configuration
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)


class FakeObjectStorage:
    """
    In-memory stand-in for ObjectStorageClient.

    ``fail_keys`` maps a key to the number of delete attempts that should
    still fail for it (-1 fails forever).
    """

    bucket_name = "test-bucket"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.sessions: Dict[str, str] = {}
        self.uploaded_parts: Dict[str, Dict[int, bytes]] = {}
        self.assembled: Dict[str, List[int]] = {}
        self.aborted: List[str] = []
        self.delete_calls: List[List[str]] = []
        self.fail_keys: Dict[str, int] = {}
        self.assembly_fails = False
        self._ids = count(1)

    # Test helpers

    def put(self, key: str, data: bytes = b"data") -> None:
        self.objects[key] = data

    def upload_part(self, upload_id: str, part_number: int, data: bytes) -> str:
        self.uploaded_parts[upload_id][part_number] = data
        return f"etag-{part_number}"

    # ObjectStorageClient surface

    def _capability(self, key, method, expires, part_number=None) -> PresignedURL:
        expires = expires or timedelta(minutes=15)
        url = f"https://storage.test/{self.bucket_name}/{key}?method={method}"
        if part_number is not None:
            url += f"&partNumber={part_number}"
        return PresignedURL.issued_now(url, key, method, expires, part_number=part_number)

    def presign_put(self, key: str, expires: Optional[timedelta] = None) -> PresignedURL:
        return self._capability(key, "PUT", expires)

    def presign_get(self, key: str, expires: Optional[timedelta] = None, filename: Optional[str] = None) -> PresignedURL:
        return self._capability(key, "GET", expires)

    def create_multipart_upload(self, key: str, mime_type: str) -> str:
        upload_id = f"upload-{next(self._ids)}"
        self.sessions[upload_id] = key
        self.uploaded_parts[upload_id] = {}
        return upload_id

    def presign_upload_part(self, key, upload_id, part_number, expires=None) -> PresignedURL:
        return self._capability(key, "PUT", expires, part_number=part_number)

    def complete_multipart_upload(self, key: str, upload_id: str, parts: Sequence[Tuple[int, str]]) -> None:
        if upload_id not in self.sessions:
            raise PermanentBackendError("complete_multipart failed: NoSuchUpload")
        if self.assembly_fails:
            raise TransientBackendError("complete_multipart failed: InvalidPart")
        numbers = [n for n, _ in parts]
        if numbers != sorted(numbers):
            raise PermanentBackendError("complete_multipart failed: InvalidPartOrder")
        chunks = self.uploaded_parts.pop(upload_id)
        self.objects[key] = b"".join(chunks.get(n, b"") for n in numbers)
        self.assembled[key] = numbers
        del self.sessions[upload_id]

    def abort_multipart_upload(self, key: str, upload_id: str) -> bool:
        self.aborted.append(upload_id)
        if upload_id not in self.sessions:
            return False
        del self.sessions[upload_id]
        self.uploaded_parts.pop(upload_id, None)
        return True

    def stat_object(self, key: str) -> Optional[ObjectStat]:
        if key not in self.objects:
            return None
        return ObjectStat(key=key, size=len(self.objects[key]))

    def delete_objects(self, keys: Iterable[str]) -> BatchDeleteResult:
        keys = list(dict.fromkeys(keys))
        self.delete_calls.append(keys)
        result = BatchDeleteResult()
        for key in keys:
            remaining = self.fail_keys.get(key, 0)
            if remaining != 0:
                if remaining > 0:
                    self.fail_keys[key] = remaining - 1
                result.failed[key] = "InternalError: backend unavailable"
                continue
            self.objects.pop(key, None)
            result.deleted.append(key)
        return result

    def ensure_bucket(self) -> None:
        return None


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events: List[Tuple[str, dict]] = []

    def publish(self, event, payload):
        self.events.append((event, payload))


class FakeClock:
    """Settable clock returning timezone-aware UTC datetimes."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db_session = TestingSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite://",
        NOTIFICATIONS_ENABLED=False,
        CLEANUP_BATCH_SIZE=2,
        CLEANUP_RETRY_ATTEMPTS=3,
        CLEANUP_RETRY_DELAY_SECONDS=5.0,
        SOFT_DELETE_RETENTION_MINUTES=10,
    )


@pytest.fixture
def storage() -> FakeObjectStorage:
    return FakeObjectStorage()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_object(db: Session, storage: FakeObjectStorage, clock: FakeClock):
    """Factory creating a stored object row plus its remote object."""

    def _make(
        owner_id: str = "user-1",
        name: str = "report.pdf",
        expiry: Optional[datetime] = None,
        deleted_at: Optional[datetime] = None,
        remote: bool = True,
    ) -> StoredObject:
        key = build_object_key(owner_id, name)
        if remote:
            storage.put(key)
        obj = StoredObject(
            key=key,
            display_name=name,
            mime_type="application/pdf",
            size_bytes=4,
            owner_id=owner_id,
            expiry=expiry,
            deleted_at=deleted_at,
            created_at=clock.now,
            updated_at=clock.now,
        )
        db.add(obj)
        db.commit()
        db.refresh(obj)
        return obj

    return _make


@pytest.fixture(scope="function")
def client(db: Session, storage: FakeObjectStorage, notifier: RecordingNotifier) -> Generator[TestClient, None, None]:
    """Create a test client with database, storage and notifier overrides."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal

    # Not entered as a context manager: startup would try to reach MinIO
    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def owner_headers() -> Dict[str, str]:
    return {"X-Owner-Id": "user-1"}
