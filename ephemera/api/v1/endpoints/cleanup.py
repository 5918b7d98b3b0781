"""
Operator endpoints for the lifecycle scheduler.

Guarded by the ``X-Admin-Token`` header; disabled when no token is configured.
"""
import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from ephemera.api.deps import get_notifier, get_session_factory, get_storage
from ephemera.core.config import settings
from ephemera.core.security import require_admin_token
from ephemera.db import get_db
from ephemera.models import DeletionStatus
from ephemera.schemas.upload import AuditEntryResponse, CleanupRunAccepted
from ephemera.services.audit import DeletionAuditLog
from ephemera.services.lifecycle import new_run_id, run_cleanup_once
from ephemera.services.notifier import Notifier
from ephemera.storage.client import ObjectStorageClient

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_token)])


def _run_in_background(
    session_factory: Callable[[], Session],
    storage: ObjectStorageClient,
    notifier: Notifier,
    run_id: str,
) -> None:
    report = run_cleanup_once(session_factory, storage, settings=settings, notifier=notifier, run_id=run_id)
    logger.info(f"Background cleanup run finished: {report.to_dict()}", extra={"run_id": run_id})


@router.post("/run", response_model=CleanupRunAccepted, status_code=status.HTTP_202_ACCEPTED)
def run_cleanup(
    background_tasks: BackgroundTasks,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    storage: ObjectStorageClient = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Schedule a cleanup run (soft delete expired, then hard delete).

    The run starts after the response is sent. Its counts are logged under
    the returned `run_id`; per-object outcomes land in the audit log.
    """
    run_id = new_run_id()
    background_tasks.add_task(_run_in_background, session_factory, storage, notifier, run_id)
    logger.info("Cleanup run scheduled", extra={"run_id": run_id})
    return CleanupRunAccepted(run_id=run_id)


@router.get("/audit", response_model=List[AuditEntryResponse])
def list_audit_entries(
    object_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    status_filter: Optional[DeletionStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    """
    List deletion audit entries, newest first.
    """
    return DeletionAuditLog(db).list_entries(
        object_id=object_id,
        owner_id=owner_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
