"""Middleware components for the usage service."""

from .logging import RequestLoggingMiddleware
from .quota_check import require_ai_quota, require_analysis_quota

__all__ = [
    "RequestLoggingMiddleware",
    "require_ai_quota",
    "require_analysis_quota",
]
