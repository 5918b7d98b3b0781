"""
Middleware package for FastAPI application.
"""
from ephemera.middleware.metrics import MetricsMiddleware

__all__ = ["MetricsMiddleware"]
