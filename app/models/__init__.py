"""Pydantic models for the usage API."""

from .usage import (
    AnalyzeRequest,
    AnalyzeResponse,
    HealthResponse,
    MyPlanResponse,
    PlansResponse,
    RecordUsageRequest,
    UsageBreakdownResponse,
    UsageCheckRequest,
)

__all__ = [
    "UsageCheckRequest",
    "RecordUsageRequest",
    "UsageBreakdownResponse",
    "PlansResponse",
    "MyPlanResponse",
    "AnalyzeRequest",
    "AnalyzeResponse",
    "HealthResponse",
]
