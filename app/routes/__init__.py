"""API routes for the usage service."""

from .analysis import router as analysis_router
from .health import router as health_router
from .plans import router as plans_router
from .usage import router as usage_router

__all__ = [
    "analysis_router",
    "health_router",
    "plans_router",
    "usage_router",
]
