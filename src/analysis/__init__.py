"""AI analysis engine and supporting-content fetching."""

from .context import extract_text, fetch_supporting_content
from .engine import (
    AnalysisEngine,
    AnalysisResult,
    OpenAIAnalysisEngine,
    build_tag_analysis_prompt,
    estimate_cost,
    estimate_tokens,
)

__all__ = [
    "AnalysisEngine",
    "AnalysisResult",
    "OpenAIAnalysisEngine",
    "build_tag_analysis_prompt",
    "estimate_cost",
    "estimate_tokens",
    "extract_text",
    "fetch_supporting_content",
]
