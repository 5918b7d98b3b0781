"""
Engine services: upload sessions, lifecycle cleanup, audit log, notifications.
"""
from ephemera.services.audit import DeletionAuditLog, ObjectSnapshot
from ephemera.services.lifecycle import LifecycleScheduler, CleanupReport, HardDeleteStats, run_cleanup_once
from ephemera.services.notifier import Notifier, NullNotifier, RedisNotifier, build_notifier
from ephemera.services.retry import RetryPolicy
from ephemera.services.uploads import UploadSessionManager, UploadPlan, UploadMetadata

__all__ = [
    "DeletionAuditLog",
    "ObjectSnapshot",
    "LifecycleScheduler",
    "CleanupReport",
    "HardDeleteStats",
    "run_cleanup_once",
    "Notifier",
    "NullNotifier",
    "RedisNotifier",
    "build_notifier",
    "RetryPolicy",
    "UploadSessionManager",
    "UploadPlan",
    "UploadMetadata",
]
