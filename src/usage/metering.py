"""
Server-side metered AI operations.

Pipeline for one operation:
    load plan state -> authoritative quota check -> engine.generate
    -> acceptance predicate -> record_usage

Only accepted results are billed. Operations run as tracked tasks so a
disconnecting client cannot cancel them halfway: the result is still
validated and, if accepted, recorded.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Set

import sentry_sdk

from src.analysis.engine import AnalysisEngine, AnalysisResult
from src.plans.repository import PlanStateRepository
from src.plans.resolver import PlanResolver
from src.types.usage import FeatureType
from src.utils.logging import mask_user_id

from .acceptance import AcceptanceCriteria, evaluate_analysis
from .errors import AnalysisRejected, QuotaExceeded, TransientEngineError, UsageRecordingError
from .manager import UsageManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeteredResult:
    result: AnalysisResult
    usage_recorded: bool
    duplicate: bool = False


class MeteredOperationRunner:
    """Runs AI operations behind the quota gate and bills accepted results."""

    def __init__(
        self,
        manager: UsageManager,
        engine: AnalysisEngine,
        resolver: PlanResolver,
        plan_repository: PlanStateRepository,
        criteria: AcceptanceCriteria = AcceptanceCriteria(),
    ):
        self.manager = manager
        self.engine = engine
        self.resolver = resolver
        self.plan_repository = plan_repository
        self.criteria = criteria
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def run(
        self,
        user_id: str,
        feature_type: FeatureType,
        prompt: str,
        context: Sequence[str] = (),
        idempotency_key: Optional[str] = None,
    ) -> MeteredResult:
        """
        Execute one metered operation.

        Raises:
            QuotaExceeded: the user is out of quota; nothing was generated
            TransientEngineError: infrastructure failure; not billed
            AnalysisRejected: the result failed validation; not billed
        """
        state = await self.plan_repository.get_user_plan_state(user_id)
        plan = self.resolver.effective_plan(state)
        limits = self.resolver.effective_limits(state)

        check = await self.manager.check_usage_limit(user_id, plan, feature_type, limits)
        if not check.allowed:
            raise QuotaExceeded(
                check.reason or "quota exceeded",
                plan,
                check.limit_type,
                reset_date=self.resolver.reset_date(state),
            )

        try:
            result = await self.engine.generate(prompt, context)
        except TransientEngineError:
            logger.warning(
                f"{feature_type.value} for user {mask_user_id(user_id)} hit a transient "
                f"engine error; usage not recorded"
            )
            raise

        decision = evaluate_analysis(result.text, criteria=self.criteria)
        if not decision.accepted:
            logger.info(
                f"{feature_type.value} result rejected for user {mask_user_id(user_id)}: "
                f"{decision.reason}"
            )
            raise AnalysisRejected(decision.reason or "rejected")

        try:
            recorded = await self.manager.record_usage(
                user_id,
                feature_type,
                result.tokens_used,
                result.cost_usd,
                idempotency_key=idempotency_key,
            )
        except UsageRecordingError as e:
            # Fails open: the user keeps the result, the event is lost.
            logger.error(
                f"Failed to record {feature_type.value} usage for user "
                f"{mask_user_id(user_id)}: {e}"
            )
            with sentry_sdk.new_scope() as scope:
                scope.set_user({"id": user_id})
                scope.set_tag("feature_type", feature_type.value)
                sentry_sdk.capture_exception(e)
            return MeteredResult(result=result, usage_recorded=False)

        return MeteredResult(
            result=result,
            usage_recorded=not recorded.duplicate,
            duplicate=recorded.duplicate,
        )

    def submit(self, *args, **kwargs) -> "asyncio.Task[MeteredResult]":
        """Start run() as a tracked task that outlives its caller."""
        task = asyncio.create_task(self.run(*args, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_shielded(self, *args, **kwargs) -> MeteredResult:
        """
        submit() and await the task through asyncio.shield.

        If the awaiting request is cancelled the operation keeps running
        and is billed on acceptance.
        """
        return await asyncio.shield(self.submit(*args, **kwargs))

    async def drain(self) -> None:
        """Wait for in-flight operations (called on shutdown)."""
        if not self._tasks:
            return
        logger.info(f"Waiting for {len(self._tasks)} in-flight AI operation(s)")
        await asyncio.gather(*self._tasks, return_exceptions=True)
