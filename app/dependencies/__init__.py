"""
FastAPI dependencies for the usage service.

Usage:
    from app.dependencies import get_container, get_plan_context

    @router.get("/usage/stats")
    async def stats(ctx: PlanContext = Depends(get_plan_context)):
        ...
"""

from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends, Request

from app.auth import get_current_user_id
from app.exceptions import ServiceUnavailableError
from src.types.plan_state import UserPlanState
from src.types.plans import PlanLimits, PlanTier
from src.usage.metering import MeteredOperationRunner

from .container import ServiceContainer, build_container


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


@dataclass(frozen=True)
class PlanContext:
    """The caller's entitlement state resolved once per request."""

    user_id: str
    state: UserPlanState
    plan: PlanTier
    limits: PlanLimits
    reset_date: datetime
    is_test_account: bool


async def get_plan_context(
    user_id: str = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
) -> PlanContext:
    state = await container.plan_repository.get_user_plan_state(user_id)
    resolver = container.resolver
    return PlanContext(
        user_id=user_id,
        state=state,
        plan=resolver.effective_plan(state),
        limits=resolver.effective_limits(state),
        reset_date=resolver.reset_date(state),
        is_test_account=resolver.is_test_account(state),
    )


def get_runner(container: ServiceContainer = Depends(get_container)) -> MeteredOperationRunner:
    if container.runner is None:
        raise ServiceUnavailableError("AI analysis is not configured")
    return container.runner


__all__ = [
    "ServiceContainer",
    "build_container",
    "get_container",
    "PlanContext",
    "get_plan_context",
    "get_runner",
]
