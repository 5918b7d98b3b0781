"""
FastAPI dependencies wiring the engine services to a request.

The storage client and notifier are built once at startup and kept on
``app.state``; services are cheap per-request wrappers around them.
"""
from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ephemera.core.config import settings
from ephemera.db import SessionLocal, get_db
from ephemera.services.lifecycle import LifecycleScheduler
from ephemera.services.notifier import Notifier
from ephemera.services.uploads import UploadSessionManager
from ephemera.storage.client import ObjectStorageClient


def get_storage(request: Request) -> ObjectStorageClient:
    return request.app.state.storage


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_upload_manager(
    db: Session = Depends(get_db),
    storage: ObjectStorageClient = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
) -> UploadSessionManager:
    return UploadSessionManager(db, storage, settings=settings, notifier=notifier)


def get_scheduler(
    db: Session = Depends(get_db),
    storage: ObjectStorageClient = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
) -> LifecycleScheduler:
    return LifecycleScheduler(db, storage, settings=settings, notifier=notifier)


def get_session_factory() -> Callable[[], Session]:
    """Session factory for work that outlives the request (background runs)."""
    return SessionLocal
