"""
Plan resolver: turns a user's entitlement state into the plan and limits
that are actually enforced.

Rules, in order:
1. Test accounts get their override plan (or their allowlist tier, or pro).
2. A pending downgrade whose effective date has passed wins over plan.
3. An expired subscription resolves to free.
4. Otherwise the stored plan.

The resolver never raises for missing data; it degrades to documented
fallbacks and logs the degradation.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from src.types.plan_state import SubscriptionStatus, UserPlanState
from src.types.plans import (
    PLAN_DISPLAY_NAMES,
    UNLIMITED,
    UNLIMITED_AI_QUOTA,
    PlanLimits,
    PlanTier,
    limits_for,
)
from src.types.usage import as_utc
from src.utils.logging import mask_user_id

logger = logging.getLogger(__name__)

UNLIMITED_TEST_PLAN = "unlimited"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clamped(year: int, month: int, day: int, like: datetime) -> datetime:
    """datetime(year, month, min(day, days_in_month)) with like's time of day."""
    last_day = calendar.monthrange(year, month)[1]
    return like.replace(year=year, month=month, day=min(day, last_day))


def _add_month(year: int, month: int) -> tuple:
    if month == 12:
        return year + 1, 1
    return year, month + 1


class PlanResolver:
    """
    Computes effective plan, limits and AI reset date for a user.

    test_account_plans maps Firebase UID to "free", "plus", "pro" or
    "unlimited". The UID is the only key consulted.
    """

    def __init__(
        self,
        test_account_plans: Optional[Mapping[str, str]] = None,
        fallback_anchor_day: int = 11,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._test_account_plans = dict(test_account_plans or {})
        self._fallback_anchor_day = fallback_anchor_day
        self._clock = clock

    def _now(self, now: Optional[datetime]) -> datetime:
        return as_utc(now) if now is not None else self._clock()

    def _allowlist_entry(self, user: UserPlanState) -> Optional[str]:
        return self._test_account_plans.get(user.user_id)

    def is_test_account(self, user: UserPlanState) -> bool:
        return user.is_test_account or self._allowlist_entry(user) is not None

    def is_unlimited_test_account(self, user: UserPlanState) -> bool:
        return (
            self.is_test_account(user)
            and user.test_override_plan is None
            and self._allowlist_entry(user) == UNLIMITED_TEST_PLAN
        )

    def effective_plan(self, user: UserPlanState, now: Optional[datetime] = None) -> PlanTier:
        """The tier whose limits apply right now."""
        now = self._now(now)

        if self.is_test_account(user):
            if user.test_override_plan is not None:
                return user.test_override_plan
            entry = self._allowlist_entry(user)
            if entry and entry != UNLIMITED_TEST_PLAN:
                return PlanTier(entry)
            return PlanTier.PRO

        downgrade = user.pending_downgrade
        if downgrade is not None and downgrade.effective_date <= now:
            return downgrade.to_plan

        if user.status == SubscriptionStatus.EXPIRED:
            return PlanTier.FREE

        return user.plan or PlanTier.FREE

    def effective_limits(self, user: UserPlanState, now: Optional[datetime] = None) -> PlanLimits:
        """Catalog limits for the effective plan; unlimited test accounts lift every cap."""
        limits = limits_for(self.effective_plan(user, now))
        if self.is_unlimited_test_account(user):
            return limits.model_copy(
                update={
                    "max_links": UNLIMITED,
                    "max_links_per_day": UNLIMITED,
                    "max_tags": UNLIMITED,
                    "ai_monthly_quota": UNLIMITED_AI_QUOTA,
                    "ai_daily_quota": UNLIMITED_AI_QUOTA,
                }
            )
        return limits

    def plan_start_date(self, user: UserPlanState, now: Optional[datetime] = None) -> Optional[datetime]:
        """
        When the current plan started.

        Test accounts count from account creation; a downgrade that has
        taken effect counts from its effective date.
        """
        now = self._now(now)

        if self.is_test_account(user):
            return user.created_at

        downgrade = user.pending_downgrade
        if downgrade is not None and downgrade.effective_date <= now:
            return downgrade.effective_date

        return user.start_date or user.created_at

    def reset_date(self, user: UserPlanState, now: Optional[datetime] = None) -> datetime:
        """
        Next AI-quota reset for display, anchored to the plan start's
        day of month and clamped to short months.

        This is display-only; enforcement uses calendar months.
        """
        now = self._now(now)
        start = self.plan_start_date(user, now)

        if start is None:
            logger.warning(
                f"No plan start date for user {mask_user_id(user.user_id)}, "
                f"anchoring reset to day {self._fallback_anchor_day}"
            )
            anchor_day = self._fallback_anchor_day
            time_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        else:
            start = as_utc(start)
            anchor_day = start.day
            time_of_day = now.replace(
                hour=start.hour,
                minute=start.minute,
                second=start.second,
                microsecond=start.microsecond,
            )

        candidate = _clamped(now.year, now.month, anchor_day, time_of_day)
        if candidate <= now:
            year, month = _add_month(now.year, now.month)
            candidate = _clamped(year, month, anchor_day, time_of_day)
        return candidate

    def can_create_link(
        self,
        user: UserPlanState,
        current_count: int,
        now: Optional[datetime] = None,
    ) -> bool:
        max_links = self.effective_limits(user, now).max_links
        return max_links == UNLIMITED or current_count < max_links

    def can_create_tag(
        self,
        user: UserPlanState,
        current_count: int,
        now: Optional[datetime] = None,
    ) -> bool:
        max_tags = self.effective_limits(user, now).max_tags
        return max_tags == UNLIMITED or current_count < max_tags

    def display_name(self, user: UserPlanState, now: Optional[datetime] = None) -> str:
        name = PLAN_DISPLAY_NAMES[self.effective_plan(user, now)]
        if self.is_test_account(user):
            return f"{name} (test)"
        return name
