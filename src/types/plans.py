"""
Plan catalog: subscription tiers, their limits and their pricing.

This module defines:
- PlanTier and the static per-tier limits (links, tags, AI quotas)
- Pricing shown on the plans screen
- Lookup helpers used by the resolver and the usage manager

The catalog is pure data. It does no I/O and cannot fail.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Sentinel for "no limit" on link and tag counts.
UNLIMITED = -1

# Finite AI quota granted to unlimited test accounts.
UNLIMITED_AI_QUOTA = 999_999


class PlanTier(str, Enum):
    """
    Subscription tiers, ordered free < plus < pro.
    """
    FREE = "free"
    PLUS = "plus"
    PRO = "pro"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER: List[PlanTier] = [PlanTier.FREE, PlanTier.PLUS, PlanTier.PRO]


class PlanFeatures(BaseModel):
    """Feature flags unlocked by a tier."""

    model_config = ConfigDict(frozen=True)

    custom_reminders: bool = False
    advanced_search: bool = False
    data_export: bool = False
    basic_alerts: bool = True


class PlanLimits(BaseModel):
    """Per-tier limits. UNLIMITED (-1) disables a link or tag limit."""

    model_config = ConfigDict(frozen=True)

    max_links: int = Field(..., description="Saved links allowed (-1 for unlimited)")
    max_links_per_day: int = Field(..., description="Links that may be added per day")
    max_tags: int = Field(..., description="Tags allowed (-1 for unlimited)")
    ai_monthly_quota: int = Field(..., ge=0, description="AI operations per calendar month")
    ai_daily_quota: int = Field(..., ge=0, description="AI operations per calendar day")
    features: PlanFeatures = Field(default_factory=PlanFeatures)


class PlanPricing(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: int
    currency: str = "JPY"
    period: str = "month"


class PlanDetails(BaseModel):
    """One row of the public plan list."""

    name: PlanTier
    display_name: str
    limits: PlanLimits
    pricing: PlanPricing
    features: List[str] = Field(default_factory=list)


PLAN_LIMITS: Dict[PlanTier, PlanLimits] = {
    PlanTier.FREE: PlanLimits(
        max_links=5,
        max_links_per_day=5,
        max_tags=50,
        ai_monthly_quota=5,
        ai_daily_quota=5,
        features=PlanFeatures(),
    ),
    PlanTier.PLUS: PlanLimits(
        max_links=50,
        max_links_per_day=25,
        max_tags=500,
        ai_monthly_quota=50,
        ai_daily_quota=10,
        features=PlanFeatures(custom_reminders=True),
    ),
    PlanTier.PRO: PlanLimits(
        max_links=500,
        max_links_per_day=100,
        max_tags=5000,
        ai_monthly_quota=200,
        ai_daily_quota=30,
        features=PlanFeatures(
            custom_reminders=True,
            advanced_search=True,
            data_export=True,
        ),
    ),
}

PLAN_PRICING: Dict[PlanTier, PlanPricing] = {
    PlanTier.FREE: PlanPricing(amount=0),
    PlanTier.PLUS: PlanPricing(amount=480),
    PlanTier.PRO: PlanPricing(amount=980),
}

PLAN_DISPLAY_NAMES: Dict[PlanTier, str] = {
    PlanTier.FREE: "Free",
    PlanTier.PLUS: "Plus",
    PlanTier.PRO: "Pro",
}


def limits_for(tier: PlanTier) -> PlanLimits:
    """Get the static limits for a tier."""
    return PLAN_LIMITS[PlanTier(tier)]


def pricing_for(tier: PlanTier) -> PlanPricing:
    """Get the list price for a tier."""
    return PLAN_PRICING[PlanTier(tier)]


def next_tier(tier: PlanTier) -> Optional[PlanTier]:
    """The tier to suggest when a user runs out of quota, or None at the top."""
    rank = PlanTier(tier).rank
    if rank + 1 < len(_TIER_ORDER):
        return _TIER_ORDER[rank + 1]
    return None


def _format_limit(value: int, unit: str) -> str:
    if value == UNLIMITED:
        return f"Unlimited {unit}"
    return f"{value} {unit}"


def describe_features(tier: PlanTier) -> List[str]:
    """Human-readable feature list for the plans screen."""
    limits = limits_for(tier)
    lines = [
        f"Save up to {_format_limit(limits.max_links, 'links')}",
        f"Add up to {limits.max_links_per_day} links per day",
        f"AI analysis {limits.ai_monthly_quota}/month ({limits.ai_daily_quota}/day)",
        "Basic reminders",
    ]
    if limits.features.custom_reminders:
        lines.append("Custom reminder schedules")
    if limits.features.advanced_search:
        lines.append("Advanced search")
    if limits.features.data_export:
        lines.append("Data export")
    return lines


def get_all_plans() -> List[PlanDetails]:
    """All tiers in display order with limits, pricing and feature copy."""
    return [
        PlanDetails(
            name=tier,
            display_name=PLAN_DISPLAY_NAMES[tier],
            limits=limits_for(tier),
            pricing=pricing_for(tier),
            features=describe_features(tier),
        )
        for tier in _TIER_ORDER
    ]
