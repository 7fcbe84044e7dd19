"""
Usage metering endpoints.

POST /usage/check   advisory quota check for the app's upgrade prompts
POST /usage/record  record one accepted AI operation (idempotent by key)
GET  /usage/stats   current month / today / analysis counters
GET  /usage/breakdown  per-feature counts for the current month
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from src.types.usage import RecordUsageResult, UsageCheckResult, UsageStats
from src.utils.logging import mask_user_id

from ..auth import get_current_user_id
from ..dependencies import PlanContext, get_container, get_plan_context
from ..dependencies.container import ServiceContainer
from ..exceptions import AuthorizationError
from ..models.usage import RecordUsageRequest, UsageBreakdownResponse, UsageCheckRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])


def _ensure_same_user(caller: str, requested: Optional[str]) -> None:
    if requested is not None and requested != caller:
        logger.warning(
            f"User {mask_user_id(caller)} attempted to act on {mask_user_id(requested)}"
        )
        raise AuthorizationError("Cannot access another user's usage")


@router.post("/check", response_model=UsageCheckResult)
async def check_usage(
    body: UsageCheckRequest,
    ctx: PlanContext = Depends(get_plan_context),
    container: ServiceContainer = Depends(get_container),
) -> UsageCheckResult:
    """
    Check whether one more AI operation is allowed.

    The plan in the body is what the client believes; test accounts and
    unlimited overrides are applied from the server-side plan state.
    """
    _ensure_same_user(ctx.user_id, body.user_id)
    limits = ctx.limits if ctx.is_test_account or body.plan == ctx.plan else None
    return await container.manager.check_usage_limit(
        ctx.user_id, body.plan, body.feature_type, limits
    )


@router.post("/record", response_model=RecordUsageResult)
async def record_usage(
    body: RecordUsageRequest,
    user_id: str = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
) -> RecordUsageResult:
    """
    Record an accepted AI operation.

    Not gated by quota: the operation already happened. Storage failures
    surface as 503 and are not retried server-side.
    """
    _ensure_same_user(user_id, body.user_id)
    return await container.manager.record_usage(
        user_id,
        body.feature_type,
        body.tokens_used,
        body.cost_usd,
        idempotency_key=body.idempotency_key,
    )


@router.get("/stats", response_model=UsageStats)
async def get_usage_stats(
    ctx: PlanContext = Depends(get_plan_context),
    container: ServiceContainer = Depends(get_container),
) -> UsageStats:
    return await container.manager.get_usage_stats(
        ctx.user_id,
        plan=ctx.plan,
        limits=ctx.limits,
        reset_date=ctx.reset_date,
    )


@router.get("/breakdown", response_model=UsageBreakdownResponse)
async def get_usage_breakdown(
    user_id: str = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
) -> UsageBreakdownResponse:
    breakdown = await container.manager.get_usage_breakdown(user_id)
    return UsageBreakdownResponse(
        period_month=breakdown.period_month,
        counts=breakdown.counts,
        total=breakdown.total,
    )
