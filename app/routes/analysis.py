"""
Metered AI analysis endpoint.

The quota gate runs first so over-quota callers never trigger content
fetches. The operation itself runs shielded: if the client disconnects,
the analysis still completes and is billed only if accepted.
"""

import logging

from fastapi import APIRouter, Depends

from src.analysis.context import fetch_supporting_content
from src.usage.metering import MeteredOperationRunner

from ..dependencies import PlanContext, get_container, get_runner
from ..dependencies.container import ServiceContainer
from ..middleware.quota_check import require_analysis_quota
from ..models.usage import AnalyzeRequest, AnalyzeResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze(
    body: AnalyzeRequest,
    ctx: PlanContext = Depends(require_analysis_quota),
    runner: MeteredOperationRunner = Depends(get_runner),
    container: ServiceContainer = Depends(get_container),
) -> AnalyzeResponse:
    context = await fetch_supporting_content(
        [str(url) for url in body.context_urls],
        timeout_seconds=container.settings.usage.supporting_content_timeout_seconds,
    )

    metered = await runner.run_shielded(
        ctx.user_id,
        body.feature_type,
        body.prompt,
        context,
        idempotency_key=body.idempotency_key,
    )

    result = metered.result
    return AnalyzeResponse(
        text=result.text,
        tokens_used=result.tokens_used,
        cost_usd=result.cost_usd,
        model_id=result.model_id,
        usage_recorded=metered.usage_recorded,
        context_pages=len(context),
    )
