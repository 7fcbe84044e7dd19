"""
Domain errors raised by the metering pipeline.

The HTTP layer maps these onto the API exception hierarchy in
app/exceptions.py.
"""

from datetime import datetime
from typing import Optional

from src.types.plans import PlanTier, next_tier
from src.types.usage import LimitType


class UsageError(Exception):
    """Base class for metering errors."""


class QuotaExceeded(UsageError):
    """The user has no AI quota left for the current day or month."""

    def __init__(
        self,
        reason: str,
        plan: PlanTier,
        limit_type: Optional[LimitType] = None,
        reset_date: Optional[datetime] = None,
    ):
        self.reason = reason
        self.plan = plan
        self.limit_type = limit_type
        self.reset_date = reset_date
        self.suggested_plan = next_tier(plan)
        super().__init__(reason)


class AnalysisRejected(UsageError):
    """The AI result failed validation; the operation is not billed."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Analysis rejected ({reason}); usage counter was not consumed")


class TransientEngineError(UsageError):
    """The analysis engine failed for infrastructure reasons (timeout, 5xx)."""


class UsageRecordingError(UsageError):
    """Writing a usage event failed. Never retried automatically."""


class LedgerUnavailableError(UsageError):
    """Usage or plan-state storage could not be read."""


class EngineError(UsageError):
    """The analysis engine failed for a non-transient reason (auth, bad request)."""
