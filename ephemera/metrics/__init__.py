"""
Metrics module for application monitoring.

This module provides Prometheus metrics collection and helper functions.
"""
from ephemera.metrics.prometheus import (
    # API Metrics
    api_requests_total,
    api_request_duration_seconds,
    api_requests_in_progress,

    # Upload Metrics
    uploads_started_total,
    uploads_completed_total,
    uploads_failed_total,
    multipart_aborts_total,

    # Lifecycle Metrics
    objects_soft_deleted_total,
    objects_hard_deleted_total,
    deletion_failures_total,
    cleanup_runs_total,
    cleanup_run_duration_seconds,

    # Storage Metrics
    storage_operations_total,
    storage_operation_duration_seconds,

    # System Metrics
    app_info,
    app_uptime_seconds,

    # Helper Functions
    record_api_request,
    record_storage_operation,
    record_upload_started,
    record_upload_completed,
    record_upload_failed,
    record_multipart_abort,
    record_soft_delete,
    record_hard_delete,
    record_deletion_failure,
    record_cleanup_run,
)

__all__ = [
    "api_requests_total",
    "api_request_duration_seconds",
    "api_requests_in_progress",
    "uploads_started_total",
    "uploads_completed_total",
    "uploads_failed_total",
    "multipart_aborts_total",
    "objects_soft_deleted_total",
    "objects_hard_deleted_total",
    "deletion_failures_total",
    "cleanup_runs_total",
    "cleanup_run_duration_seconds",
    "storage_operations_total",
    "storage_operation_duration_seconds",
    "app_info",
    "app_uptime_seconds",
    "record_api_request",
    "record_storage_operation",
    "record_upload_started",
    "record_upload_completed",
    "record_upload_failed",
    "record_multipart_abort",
    "record_soft_delete",
    "record_hard_delete",
    "record_deletion_failure",
    "record_cleanup_run",
]
