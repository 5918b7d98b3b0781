"""
Prometheus metrics for application monitoring.

This module defines all Prometheus metrics used throughout the application:
- API request metrics (requests, duration, in-progress)
- Upload session metrics (started, completed, failed, aborted)
- Lifecycle metrics (soft/hard deletions, failures, run duration)
- Storage backend metrics (operations, duration)
"""
from prometheus_client import Counter, Gauge, Histogram


# ============================================================================
# API Metrics
# ============================================================================

api_requests_total = Counter(
    "api_requests_total",
    "Total number of API requests",
    ["method", "endpoint", "status"],
)

api_request_duration_seconds = Histogram(
    "api_request_duration_seconds",
    "API request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

api_requests_in_progress = Gauge(
    "api_requests_in_progress",
    "Number of API requests currently being processed",
    ["method", "endpoint"],
)


# ============================================================================
# Upload Metrics
# ============================================================================

uploads_started_total = Counter(
    "uploads_started_total",
    "Total number of upload sessions opened",
    ["mode"],  # mode: single, multipart
)

uploads_completed_total = Counter(
    "uploads_completed_total",
    "Total number of uploads finalized into a stored object",
    ["mode"],
)

uploads_failed_total = Counter(
    "uploads_failed_total",
    "Total number of upload completions that failed",
    ["mode", "error_type"],
)

multipart_aborts_total = Counter(
    "multipart_aborts_total",
    "Multipart sessions aborted",
    ["status"],  # status: aborted, already_gone, failed
)


# ============================================================================
# Lifecycle Metrics
# ============================================================================

objects_soft_deleted_total = Counter(
    "objects_soft_deleted_total",
    "Objects marked soft-deleted",
    ["reason"],
)

objects_hard_deleted_total = Counter(
    "objects_hard_deleted_total",
    "Objects purged from storage and metadata",
)

deletion_failures_total = Counter(
    "deletion_failures_total",
    "Lifecycle transition attempts that failed",
    ["stage", "status"],  # status: FAILED_REMOTE, FAILED_METADATA
)

cleanup_runs_total = Counter(
    "cleanup_runs_total",
    "Completed cleanup runs",
)

cleanup_run_duration_seconds = Histogram(
    "cleanup_run_duration_seconds",
    "Duration of a full cleanup run",
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, 600],
)


# ============================================================================
# Storage Metrics
# ============================================================================

storage_operations_total = Counter(
    "storage_operations_total",
    "Total number of storage operations",
    ["operation", "status"],
)

storage_operation_duration_seconds = Histogram(
    "storage_operation_duration_seconds",
    "Duration of storage operations",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)


# ============================================================================
# System Metrics (Application Level)
# ============================================================================

app_info = Gauge(
    "app_info",
    "Application information",
    ["version", "environment"],
)

app_uptime_seconds = Gauge(
    "app_uptime_seconds",
    "Application uptime in seconds",
)


# ============================================================================
# Helper Functions
# ============================================================================

def record_api_request(method: str, endpoint: str, status_code: int, duration: float):
    """Record API request metrics."""
    api_requests_total.labels(method=method, endpoint=endpoint, status=status_code).inc()
    api_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)


def record_storage_operation(operation: str, success: bool, duration: float):
    """Record storage operation metrics."""
    status = "success" if success else "failed"
    storage_operations_total.labels(operation=operation, status=status).inc()
    storage_operation_duration_seconds.labels(operation=operation).observe(duration)


def record_upload_started(mode: str):
    uploads_started_total.labels(mode=mode).inc()


def record_upload_completed(mode: str):
    uploads_completed_total.labels(mode=mode).inc()


def record_upload_failed(mode: str, error_type: str):
    uploads_failed_total.labels(mode=mode, error_type=error_type).inc()


def record_multipart_abort(status: str):
    multipart_aborts_total.labels(status=status).inc()


def record_soft_delete(reason: str):
    objects_soft_deleted_total.labels(reason=reason).inc()


def record_hard_delete():
    objects_hard_deleted_total.inc()


def record_deletion_failure(stage: str, status: str):
    deletion_failures_total.labels(stage=stage, status=status).inc()


def record_cleanup_run(duration: float):
    """Record a finished cleanup run."""
    cleanup_runs_total.inc()
    cleanup_run_duration_seconds.observe(duration)
