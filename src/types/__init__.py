"""
Type definitions for the usage service.
"""

from .plan_state import (
    PendingDowngrade,
    SubscriptionStatus,
    UserPlanState,
    coerce_timestamp,
)
from .plans import (
    PLAN_LIMITS,
    PLAN_PRICING,
    UNLIMITED,
    UNLIMITED_AI_QUOTA,
    PlanDetails,
    PlanFeatures,
    PlanLimits,
    PlanPricing,
    PlanTier,
    get_all_plans,
    limits_for,
    next_tier,
    pricing_for,
)
from .usage import (
    FeatureType,
    MonthlyUsageAggregate,
    MonthUsage,
    RecordUsageResult,
    UsageBreakdown,
    UsageCheckResult,
    UsageEvent,
    UsageStats,
    as_utc,
    period_day,
    period_month,
    summary_key,
)

__all__ = [
    # Plans
    "PlanTier",
    "PlanFeatures",
    "PlanLimits",
    "PlanPricing",
    "PlanDetails",
    "PLAN_LIMITS",
    "PLAN_PRICING",
    "UNLIMITED",
    "UNLIMITED_AI_QUOTA",
    "limits_for",
    "pricing_for",
    "next_tier",
    "get_all_plans",
    # Plan state
    "UserPlanState",
    "PendingDowngrade",
    "SubscriptionStatus",
    "coerce_timestamp",
    # Usage
    "FeatureType",
    "UsageEvent",
    "MonthlyUsageAggregate",
    "MonthUsage",
    "UsageCheckResult",
    "RecordUsageResult",
    "UsageStats",
    "UsageBreakdown",
    "as_utc",
    "period_month",
    "period_day",
    "summary_key",
]
