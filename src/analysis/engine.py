"""
Analysis engine port and the OpenAI implementation.

The engine turns a prompt plus supporting context into text, and reports
how many tokens it used and what that cost. Infrastructure failures are
raised as TransientEngineError so the caller can skip billing and let the
user retry.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Sequence, Tuple

import openai
from openai import AsyncOpenAI

from src.config import LLMSettings
from src.usage.errors import EngineError, TransientEngineError
from src.utils.logging import Timer

logger = logging.getLogger(__name__)

# USD per 1K tokens: (input, output)
MODEL_PRICES: Dict[str, Tuple[float, float]] = {
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4o": (0.0025, 0.01),
    "gpt-4.1-mini": (0.0004, 0.0016),
    "gpt-3.5-turbo": (0.0005, 0.0015),
}
DEFAULT_PRICE = MODEL_PRICES["gpt-4o-mini"]

SYSTEM_PROMPT = (
    "You are an assistant inside a read-it-later app. Explain the topic "
    "for the user using the saved pages as context. Start with a "
    "'## ' title line, then give 3-5 bullet points starting with '- '."
)


@dataclass(frozen=True)
class AnalysisResult:
    text: str
    tokens_used: int
    cost_usd: float
    model_id: str


class AnalysisEngine(Protocol):
    async def generate(self, prompt: str, context: Sequence[str] = ()) -> AnalysisResult:
        ...


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token) for providers that omit usage."""
    return max(1, len(text) // 4) if text else 0


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    input_price, output_price = MODEL_PRICES.get(model, DEFAULT_PRICE)
    return round(
        input_tokens / 1000 * input_price + output_tokens / 1000 * output_price,
        6,
    )


def build_tag_analysis_prompt(tag_name: str, link_titles: Sequence[str]) -> str:
    """Prompt for explaining a tag from the titles of the links saved under it."""
    titles = "\n".join(f"- {title}" for title in link_titles if title)
    return (
        f"Theme: {tag_name}\n\n"
        f"Saved pages:\n{titles or '- (none)'}\n\n"
        f"Explain what '{tag_name}' is about and what the user should read next."
    )


def _build_messages(prompt: str, context: Sequence[str]) -> list:
    user_content = prompt
    if context:
        joined = "\n\n---\n\n".join(context)
        user_content = f"{prompt}\n\nSupporting content:\n{joined}"
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]


class OpenAIAnalysisEngine:
    """AnalysisEngine backed by the OpenAI chat completions API."""

    def __init__(
        self,
        settings: LLMSettings,
        client: Optional[AsyncOpenAI] = None,
        max_tokens: int = 800,
    ):
        self.model = settings.openai_model
        self.max_tokens = max_tokens
        if client is None:
            api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
            client = AsyncOpenAI(api_key=api_key, timeout=settings.llm_api_timeout)
        self._client = client

    async def generate(self, prompt: str, context: Sequence[str] = ()) -> AnalysisResult:
        messages = _build_messages(prompt, context)
        try:
            with Timer("engine.generate", logger):
                response = await self._client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=self.max_tokens,
                    temperature=0.4,
                )
        except (openai.APIConnectionError, openai.InternalServerError, openai.RateLimitError) as e:
            # APITimeoutError is an APIConnectionError
            logger.warning(f"Transient OpenAI error: {type(e).__name__}: {e}")
            raise TransientEngineError(str(e)) from e
        except openai.OpenAIError as e:
            logger.error(f"OpenAI error: {type(e).__name__}: {e}")
            raise EngineError(str(e)) from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""

        if response.usage is not None:
            input_tokens = response.usage.prompt_tokens or 0
            output_tokens = response.usage.completion_tokens or 0
        else:
            input_tokens = sum(estimate_tokens(m["content"]) for m in messages)
            output_tokens = estimate_tokens(text)

        return AnalysisResult(
            text=text,
            tokens_used=input_tokens + output_tokens,
            cost_usd=estimate_cost(self.model, input_tokens, output_tokens),
            model_id=getattr(response, "model", None) or self.model,
        )
