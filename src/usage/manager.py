"""
Usage manager: authoritative quota checks and usage recording.

This module provides:
- check_usage_limit: monthly then daily quota check against live ledger state
- record_usage: append one usage event (idempotent when a key is given)
- get_usage_stats: raw counters enriched with plan limits and recommendations
- get_usage_breakdown: per-feature counts for the current month

The AI quota is plan-wide: summary, tags and analysis share one budget.
Check and record are deliberately not serialized; two concurrent requests
can both pass the check at limit-1 and overshoot by one.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from src.types.plans import PlanLimits, PlanTier, limits_for, next_tier
from src.types.usage import (
    FeatureType,
    MonthlyUsageAggregate,
    MonthUsage,
    RecordUsageResult,
    UsageBreakdown,
    UsageCheckResult,
    UsageEvent,
    UsageStats,
    period_day,
    period_month,
)
from src.utils.logging import Timer, mask_user_id

from .ledger import UsageLedgerPort

logger = logging.getLogger(__name__)

HIGH_USAGE_RATIO = 0.8
FREE_NUDGE_RATIO = 0.5
COST_WARNING_USD = 10.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def monthly_limit_reason(quota: int) -> str:
    return f"monthly limit reached ({quota}/month)"


def daily_limit_reason(quota: int) -> str:
    return f"daily limit reached ({quota}/day)"


class UsageManager:
    """
    Quota enforcement and usage accounting on top of a UsageLedgerPort.

    clock is injectable so tests can pin the calendar month and day.
    """

    def __init__(
        self,
        ledger: UsageLedgerPort,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self._clock = clock

    async def check_usage_limit(
        self,
        user_id: str,
        plan: PlanTier,
        feature_type: FeatureType,
        limits: Optional[PlanLimits] = None,
    ) -> UsageCheckResult:
        """
        Decide whether one more AI operation is allowed right now.

        Monthly is checked before daily, so a user over both limits sees
        the monthly reason. A missing aggregate counts as zero usage.
        """
        limits = limits or limits_for(plan)
        now = self._clock()

        with Timer("usage.check_usage_limit", logger):
            aggregate = await self.ledger.monthly_aggregate(user_id, period_month(now))
            if aggregate.total_requests >= limits.ai_monthly_quota:
                logger.info(
                    f"Monthly AI quota exceeded for user {mask_user_id(user_id)} "
                    f"({aggregate.total_requests}/{limits.ai_monthly_quota}, {feature_type.value})"
                )
                return UsageCheckResult.deny(
                    monthly_limit_reason(limits.ai_monthly_quota), "monthly"
                )

            today = await self.ledger.daily_count(user_id, period_day(now))
            if today >= limits.ai_daily_quota:
                logger.info(
                    f"Daily AI quota exceeded for user {mask_user_id(user_id)} "
                    f"({today}/{limits.ai_daily_quota}, {feature_type.value})"
                )
                return UsageCheckResult.deny(
                    daily_limit_reason(limits.ai_daily_quota), "daily"
                )

        return UsageCheckResult.allow()

    async def record_usage(
        self,
        user_id: str,
        feature_type: FeatureType,
        tokens_used: int,
        cost_usd: float,
        idempotency_key: Optional[str] = None,
    ) -> RecordUsageResult:
        """
        Append one usage event and bump the monthly aggregate.

        Call only after the AI result has passed acceptance. Raises
        ValueError for negative tokens or cost; storage failures propagate
        as UsageRecordingError and are never retried here.
        """
        if tokens_used < 0:
            raise ValueError("tokens_used must be >= 0")
        if cost_usd < 0:
            raise ValueError("cost_usd must be >= 0")

        event = UsageEvent.create(
            user_id=user_id,
            feature_type=feature_type,
            tokens_used=tokens_used,
            cost_usd=cost_usd,
            occurred_at=self._clock(),
            idempotency_key=idempotency_key,
        )
        appended = await self.ledger.append_event(event)

        if appended:
            logger.info(
                f"Recorded {feature_type.value} usage for user {mask_user_id(user_id)}: "
                f"{tokens_used} tokens, ${cost_usd:.4f}"
            )
        return RecordUsageResult(success=True, duplicate=not appended)

    async def get_usage_stats(
        self,
        user_id: str,
        plan: Optional[PlanTier] = None,
        limits: Optional[PlanLimits] = None,
        reset_date: Optional[datetime] = None,
    ) -> UsageStats:
        """
        Current month, today and analysis counters for a user.

        When plan is given the result also carries limits, remaining
        quota and recommendations.
        """
        now = self._clock()
        month = period_month(now)

        aggregate = await self.ledger.monthly_aggregate(user_id, month)
        today = await self.ledger.daily_count(user_id, period_day(now))
        analysis = await self.ledger.analysis_count_for_month(user_id, month)

        stats = UsageStats(
            current_month=MonthUsage(
                total_requests=aggregate.total_requests,
                total_tokens=aggregate.total_tokens,
                total_cost_usd=aggregate.total_cost_usd,
            ),
            today_usage=today,
            analysis_usage=analysis,
            reset_date=reset_date,
        )

        if plan is not None:
            limits = limits or limits_for(plan)
            stats.plan = plan
            stats.monthly_limit = limits.ai_monthly_quota
            stats.daily_limit = limits.ai_daily_quota
            stats.remaining = max(
                0,
                min(
                    limits.ai_monthly_quota - aggregate.total_requests,
                    limits.ai_daily_quota - today,
                ),
            )
            stats.recommendations = self.recommendations(aggregate, plan, limits)

        return stats

    async def get_usage_breakdown(self, user_id: str) -> UsageBreakdown:
        month = period_month(self._clock())
        counts = await self.ledger.feature_breakdown(user_id, month)
        return UsageBreakdown(period_month=month, counts=counts)

    @staticmethod
    def recommendations(
        aggregate: MonthlyUsageAggregate,
        plan: PlanTier,
        limits: Optional[PlanLimits] = None,
    ) -> List[str]:
        """Upsell and cost hints derived from this month's totals."""
        limits = limits or limits_for(plan)
        quota = limits.ai_monthly_quota
        ratio = aggregate.total_requests / quota if quota > 0 else 1.0
        upgrade = next_tier(plan)
        hints: List[str] = []

        if ratio > HIGH_USAGE_RATIO:
            hints.append("You have used over 80% of your monthly AI quota.")
            if plan == PlanTier.FREE and upgrade is not None:
                hints.append(f"Consider upgrading to {upgrade.value.capitalize()}.")

        if aggregate.total_cost_usd > COST_WARNING_USD:
            hints.append("AI cost this month is over $10.")

        if ratio > FREE_NUDGE_RATIO and plan == PlanTier.FREE and upgrade is not None:
            hints.append(
                f"{upgrade.value.capitalize()} gives you more AI analyses every month."
            )

        return hints
