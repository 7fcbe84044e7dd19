"""
Plan catalog and the caller's effective plan.
"""

from fastapi import APIRouter, Depends

from src.types.plans import get_all_plans

from ..dependencies import PlanContext, get_container, get_plan_context
from ..dependencies.container import ServiceContainer
from ..models.usage import MyPlanResponse, PlansResponse

router = APIRouter(prefix="/plans", tags=["plans"])


@router.get("", response_model=PlansResponse)
async def list_plans() -> PlansResponse:
    """All tiers with limits, pricing and feature copy. Public."""
    return PlansResponse(plans=get_all_plans())


@router.get("/me", response_model=MyPlanResponse)
async def get_my_plan(
    ctx: PlanContext = Depends(get_plan_context),
    container: ServiceContainer = Depends(get_container),
) -> MyPlanResponse:
    resolver = container.resolver
    downgrade = ctx.state.pending_downgrade
    return MyPlanResponse(
        plan=ctx.plan,
        display_name=resolver.display_name(ctx.state),
        limits=ctx.limits,
        reset_date=ctx.reset_date,
        plan_start_date=resolver.plan_start_date(ctx.state),
        is_test_account=ctx.is_test_account,
        pending_downgrade_to=downgrade.to_plan if downgrade else None,
    )
