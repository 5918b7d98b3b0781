"""
FastAPI middleware for automatic Prometheus metrics collection.

This middleware tracks:
- Total API requests with method, endpoint, and status labels
- Request duration histograms
- In-progress request gauges
"""
import re
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ephemera.metrics import api_requests_in_progress, record_api_request

_UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to automatically track API request metrics.

    Excludes the metrics endpoint itself to avoid feedback loops.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        path = request.url.path

        if path == "/metrics":
            return await call_next(request)

        normalized_path = self._normalize_path(path)
        api_requests_in_progress.labels(method=method, endpoint=normalized_path).inc()
        start_time = time.time()

        try:
            response = await call_next(request)
            record_api_request(method, normalized_path, response.status_code, time.time() - start_time)
            return response

        except Exception:
            record_api_request(method, normalized_path, 500, time.time() - start_time)
            raise

        finally:
            api_requests_in_progress.labels(method=method, endpoint=normalized_path).dec()

    def _normalize_path(self, path: str) -> str:
        """
        Replace object ids with a placeholder to keep label cardinality low.

        Examples:
            /api/v1/files/0b5e...c1/download -> /api/v1/files/{object_id}/download
            /api/v1/files/0b5e...c1 -> /api/v1/files/{object_id}
        """
        parts = path.split("/")
        normalized_parts = []

        for i, part in enumerate(parts):
            if i > 0 and parts[i - 1] == "files" and part:
                normalized_parts.append("{object_id}")
            elif _UUID_RE.match(part):
                normalized_parts.append("{id}")
            else:
                normalized_parts.append(part)

        return "/".join(normalized_parts)
