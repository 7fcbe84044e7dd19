"""Utility modules for the usage service."""

from .cache import CacheEntry, LRUCache
from .logging import (
    DevelopmentFormatter,
    JSONFormatter,
    RequestContextFilter,
    SensitiveDataFilter,
    Timer,
    clear_request_context,
    get_request_id,
    mask_user_id,
    redact_sensitive_data,
    set_request_context,
    setup_logging,
)

__all__ = [
    # Cache utilities
    "LRUCache",
    "CacheEntry",
    # Logging utilities
    "setup_logging",
    "set_request_context",
    "clear_request_context",
    "get_request_id",
    "mask_user_id",
    "Timer",
    "JSONFormatter",
    "DevelopmentFormatter",
    "RequestContextFilter",
    "SensitiveDataFilter",
    "redact_sensitive_data",
]
