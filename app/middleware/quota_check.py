"""
Quota gate dependency for AI endpoints.

Rejects over-quota callers with 429 before the route does any expensive
work (fetching supporting content, calling the engine). The metered
runner repeats the check against live state right before generating.
"""

import logging
from typing import Callable

from fastapi import Depends

from app.dependencies import PlanContext, get_container, get_plan_context
from app.dependencies.container import ServiceContainer
from src.types.usage import FeatureType
from src.usage.errors import QuotaExceeded
from src.utils.logging import mask_user_id

logger = logging.getLogger(__name__)


def require_ai_quota(feature_type: FeatureType) -> Callable:
    """
    Build a dependency that enforces the AI quota for feature_type.

    Usage:
        @router.post("/ai/summary")
        async def summarize(ctx: PlanContext = Depends(require_ai_quota(FeatureType.SUMMARY))):
            ...
    """

    async def dependency(
        ctx: PlanContext = Depends(get_plan_context),
        container: ServiceContainer = Depends(get_container),
    ) -> PlanContext:
        result = await container.manager.check_usage_limit(
            ctx.user_id, ctx.plan, feature_type, ctx.limits
        )
        if not result.allowed:
            logger.warning(
                f"Quota gate blocked {feature_type.value} for user "
                f"{mask_user_id(ctx.user_id)}: {result.reason}"
            )
            raise QuotaExceeded(
                result.reason or "quota exceeded",
                ctx.plan,
                result.limit_type,
                reset_date=ctx.reset_date,
            )

        logger.debug(f"Quota gate passed for user {mask_user_id(ctx.user_id)}")
        return ctx

    return dependency


async def require_analysis_quota(
    ctx: PlanContext = Depends(require_ai_quota(FeatureType.ANALYSIS)),
) -> PlanContext:
    return ctx
