"""
Pydantic models for AI usage metering.

This module defines the data models for:
- Usage events (one per accepted AI operation, append-only)
- Monthly usage aggregates (one per user per calendar month)
- Results of limit checks and usage recording
- Usage statistics returned to clients
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .plans import PlanTier


class FeatureType(str, Enum):
    """AI features that consume quota."""
    SUMMARY = "summary"
    TAGS = "tags"
    ANALYSIS = "analysis"


LimitType = Literal["monthly", "daily"]


def as_utc(dt: datetime) -> datetime:
    """Attach UTC tzinfo to naive datetimes and normalise aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def period_month(dt: datetime) -> str:
    """Calendar month partition key, "YYYY-MM" (UTC)."""
    return as_utc(dt).strftime("%Y-%m")


def period_day(dt: datetime) -> str:
    """Calendar day partition key, "YYYY-MM-DD" (UTC)."""
    return as_utc(dt).strftime("%Y-%m-%d")


def summary_key(user_id: str, month: str) -> str:
    """Document key of a monthly aggregate."""
    return f"{user_id}_{month}"


class UsageEvent(BaseModel):
    """
    A single accepted AI operation.

    Events are immutable once written. period_month and period_day are the
    partition keys used by the monthly aggregate and the daily count.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = Field(..., min_length=1)
    feature_type: FeatureType
    tokens_used: int = Field(default=0, ge=0)
    cost_usd: float = Field(default=0.0, ge=0.0)
    occurred_at: datetime
    period_month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    period_day: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    idempotency_key: Optional[str] = Field(default=None, max_length=128)

    @classmethod
    def create(
        cls,
        user_id: str,
        feature_type: FeatureType,
        tokens_used: int,
        cost_usd: float,
        occurred_at: datetime,
        idempotency_key: Optional[str] = None,
    ) -> "UsageEvent":
        """Build an event, deriving partition keys from occurred_at."""
        occurred_at = as_utc(occurred_at)
        return cls(
            user_id=user_id,
            feature_type=feature_type,
            tokens_used=tokens_used,
            cost_usd=cost_usd,
            occurred_at=occurred_at,
            period_month=period_month(occurred_at),
            period_day=period_day(occurred_at),
            idempotency_key=idempotency_key,
        )


class MonthlyUsageAggregate(BaseModel):
    """Running totals for one user and one calendar month."""

    user_id: str
    period_month: str
    total_requests: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0
    last_updated: Optional[datetime] = None

    @property
    def key(self) -> str:
        return summary_key(self.user_id, self.period_month)

    @classmethod
    def empty(cls, user_id: str, month: str) -> "MonthlyUsageAggregate":
        return cls(user_id=user_id, period_month=month)


class UsageCheckResult(BaseModel):
    """Outcome of a quota check. reason is set when the check denies."""

    allowed: bool
    reason: Optional[str] = None
    limit_type: Optional[LimitType] = None

    @classmethod
    def allow(cls) -> "UsageCheckResult":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str, limit_type: Optional[LimitType] = None) -> "UsageCheckResult":
        return cls(allowed=False, reason=reason, limit_type=limit_type)


class RecordUsageResult(BaseModel):
    success: bool
    duplicate: bool = False


class MonthUsage(BaseModel):
    total_requests: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0


class UsageStats(BaseModel):
    """
    Usage statistics for the current user.

    current_month / today_usage / analysis_usage are the raw counters;
    the remaining fields are derived from the user's effective plan.
    """

    current_month: MonthUsage = Field(default_factory=MonthUsage)
    today_usage: int = 0
    analysis_usage: int = 0
    plan: Optional[PlanTier] = None
    monthly_limit: Optional[int] = None
    daily_limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_date: Optional[datetime] = None
    recommendations: List[str] = Field(default_factory=list)

    @classmethod
    def zero(cls) -> "UsageStats":
        return cls()


class UsageBreakdown(BaseModel):
    """Per-feature operation counts for one month."""

    period_month: str
    counts: Dict[str, int] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())
