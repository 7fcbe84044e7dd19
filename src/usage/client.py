"""
Client SDK for the usage API.

Used by app-side code (and integration scripts) to:
- run an advisory quota check before starting an AI operation
- record usage for an accepted result, with an idempotency key
- read usage statistics through the short-TTL UsageCache

The advisory check is a UX hint only. The server re-checks before any
AI call it makes on the user's behalf.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from src.analysis.engine import AnalysisResult
from src.types.plans import PlanTier
from src.types.usage import FeatureType, RecordUsageResult, UsageCheckResult, UsageStats

from .acceptance import AcceptanceCriteria, AcceptanceDecision, evaluate_analysis
from .cache import UsageCache
from .errors import UsageRecordingError

logger = logging.getLogger(__name__)

SERVER_ERROR_REASON = "server error, please try again later"

TokenProvider = Callable[[], Awaitable[str]]


@dataclass(frozen=True)
class ClientMeteredResult:
    allowed: bool
    result: Optional[AnalysisResult] = None
    decision: Optional[AcceptanceDecision] = None
    reason: Optional[str] = None
    usage_recorded: bool = False


class UsageClient:
    """Async HTTP client for /usage endpoints, bound to one signed-in user."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        token_provider: TokenProvider,
        cache: Optional[UsageCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.user_id = user_id
        self._token_provider = token_provider
        self.cache = cache or UsageCache()
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "UsageClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _headers(self) -> dict:
        token = await self._token_provider()
        return {"Authorization": f"Bearer {token}"}

    async def check_usage_limit(self, plan: PlanTier, feature_type: FeatureType) -> UsageCheckResult:
        """
        Advisory check, always live. Fails closed: any transport or server
        error yields allowed=False with a retry-later reason.
        """
        try:
            response = await self._client.post(
                "/usage/check",
                json={"plan": PlanTier(plan).value, "feature_type": feature_type.value},
                headers=await self._headers(),
            )
            response.raise_for_status()
            return UsageCheckResult.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Usage check failed: {e}")
            return UsageCheckResult.deny(SERVER_ERROR_REASON)

    async def record_usage(
        self,
        feature_type: FeatureType,
        tokens_used: int,
        cost_usd: float,
        idempotency_key: str,
    ) -> RecordUsageResult:
        """Record one accepted operation. Raises UsageRecordingError; never retries."""
        try:
            response = await self._client.post(
                "/usage/record",
                json={
                    "feature_type": feature_type.value,
                    "tokens_used": tokens_used,
                    "cost_usd": cost_usd,
                    "idempotency_key": idempotency_key,
                },
                headers=await self._headers(),
            )
            response.raise_for_status()
            result = RecordUsageResult.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise UsageRecordingError(str(e)) from e

        self.cache.invalidate(self.user_id)
        return result

    async def _fetch_stats(self) -> UsageStats:
        response = await self._client.get("/usage/stats", headers=await self._headers())
        response.raise_for_status()
        return UsageStats.model_validate(response.json())

    async def get_usage_stats(self, force_refresh: bool = False) -> UsageStats:
        """Usage stats via the cache; zero stats if the server was never reachable."""
        return await self.cache.get_stats(
            self.user_id,
            self._fetch_stats,
            force_refresh=force_refresh,
        )

    async def run_metered(
        self,
        plan: PlanTier,
        feature_type: FeatureType,
        operation: Callable[[], Awaitable[AnalysisResult]],
        criteria: AcceptanceCriteria = AcceptanceCriteria(),
    ) -> ClientMeteredResult:
        """
        Advisory check, run the operation, validate, and record if accepted.

        A recording failure is logged and the result is still returned.
        """
        check = await self.check_usage_limit(plan, feature_type)
        if not check.allowed:
            return ClientMeteredResult(allowed=False, reason=check.reason)

        try:
            result = await operation()
        except Exception as e:
            decision = evaluate_analysis(None, error=e, criteria=criteria)
            logger.info(f"{feature_type.value} failed, not billed: {decision.reason}")
            return ClientMeteredResult(allowed=True, decision=decision, reason=decision.reason)

        decision = evaluate_analysis(result.text, criteria=criteria)
        if not decision.accepted:
            return ClientMeteredResult(
                allowed=True,
                result=result,
                decision=decision,
                reason=decision.reason,
            )

        recorded = False
        try:
            await self.record_usage(
                feature_type,
                result.tokens_used,
                result.cost_usd,
                idempotency_key=str(uuid.uuid4()),
            )
            recorded = True
        except UsageRecordingError as e:
            logger.error(f"Failed to record {feature_type.value} usage: {e}")

        return ClientMeteredResult(
            allowed=True,
            result=result,
            decision=decision,
            usage_recorded=recorded,
        )
