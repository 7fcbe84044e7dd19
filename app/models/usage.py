"""
Request and response models for the usage, plans and AI endpoints.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, HttpUrl, field_validator

from src.types.plans import PlanDetails, PlanLimits, PlanTier
from src.types.usage import FeatureType


class UsageCheckRequest(BaseModel):
    user_id: Optional[str] = Field(default=None, description="Must match the caller when given")
    plan: PlanTier
    feature_type: FeatureType


class RecordUsageRequest(BaseModel):
    user_id: Optional[str] = None
    feature_type: FeatureType
    tokens_used: int = Field(..., ge=0)
    cost_usd: float = Field(..., ge=0)
    idempotency_key: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=128,
        description="Client-generated id; retries with the same key are not double counted",
    )


class UsageBreakdownResponse(BaseModel):
    period_month: str
    counts: Dict[str, int]
    total: int


class PlansResponse(BaseModel):
    plans: List[PlanDetails]


class MyPlanResponse(BaseModel):
    plan: PlanTier
    display_name: str
    limits: PlanLimits
    reset_date: datetime
    plan_start_date: Optional[datetime] = None
    is_test_account: bool = False
    pending_downgrade_to: Optional[PlanTier] = None


class AnalyzeRequest(BaseModel):
    feature_type: FeatureType = FeatureType.ANALYSIS
    prompt: str = Field(..., min_length=1, max_length=8000)
    context_urls: List[HttpUrl] = Field(default_factory=list, max_length=10)
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=128)

    @field_validator("feature_type")
    @classmethod
    def only_analysis(cls, v: FeatureType) -> FeatureType:
        # Results are judged by the analysis acceptance rules (title + bullets)
        if v != FeatureType.ANALYSIS:
            raise ValueError("only 'analysis' is served by this endpoint")
        return v


class AnalyzeResponse(BaseModel):
    text: str
    tokens_used: int
    cost_usd: float
    model_id: str
    usage_recorded: bool
    context_pages: int = 0


class HealthResponse(BaseModel):
    status: str
    storage_backend: str
    analysis_enabled: bool
    timestamp: datetime
