"""Plan resolution and entitlement storage."""

from .repository import (
    InMemoryPlanStateRepository,
    PlanStateRepository,
    PostgresPlanStateRepository,
)
from .resolver import PlanResolver

__all__ = [
    "PlanResolver",
    "PlanStateRepository",
    "InMemoryPlanStateRepository",
    "PostgresPlanStateRepository",
]
