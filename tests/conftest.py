"""
Pytest configuration and shared fixtures for the usage service tests.

This module provides common fixtures used across all test files:
- In-memory ledger and plan-state repository
- A frozen clock for calendar-sensitive tests
- A fake analysis engine
- A FastAPI test client wired to in-memory services
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import pytest

# Environment setup before any imports
os.environ["DEV_MODE"] = "true"
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_URL_DIRECT", None)
os.environ.pop("SENTRY_DSN", None)
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("TEST_ACCOUNT_PLANS", None)

# Ensure project root is in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from src.analysis.engine import AnalysisResult  # noqa: E402

VALID_ANALYSIS = (
    "## Async Python\n"
    "- asyncio runs coroutines on a single event loop\n"
    "- Use gather to run independent awaits concurrently\n"
    "- Shield work that must finish even if the caller goes away\n"
)


class FrozenClock:
    """Callable clock returning a fixed, manually advanced UTC datetime."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeEngine:
    """Analysis engine that returns a canned result or raises."""

    def __init__(
        self,
        text: str = VALID_ANALYSIS,
        tokens_used: int = 120,
        cost_usd: float = 0.0004,
        error: Optional[Exception] = None,
    ):
        self.text = text
        self.tokens_used = tokens_used
        self.cost_usd = cost_usd
        self.error = error
        self.calls: List[str] = []

    async def generate(self, prompt: str, context: Sequence[str] = ()) -> AnalysisResult:
        self.calls.append(prompt)
        if self.error is not None:
            raise self.error
        return AnalysisResult(
            text=self.text,
            tokens_used=self.tokens_used,
            cost_usd=self.cost_usd,
            model_id="fake-model",
        )


@pytest.fixture
def frozen_clock():
    return FrozenClock(datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger():
    from src.usage.ledger import InMemoryUsageLedger

    return InMemoryUsageLedger()


@pytest.fixture
def plan_repository():
    from src.plans.repository import InMemoryPlanStateRepository

    return InMemoryPlanStateRepository()


@pytest.fixture
def manager(ledger, frozen_clock):
    from src.usage.manager import UsageManager

    return UsageManager(ledger, clock=frozen_clock)


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def engine_factory():
    """The FakeEngine class, for tests that need a custom result or error."""
    return FakeEngine


@pytest.fixture
def valid_analysis():
    return VALID_ANALYSIS


@pytest.fixture
def app_factory(ledger, plan_repository):
    """Build an app around in-memory services; ai_enabled=False leaves /ai/analyze unconfigured."""
    from src.config import reload_settings

    from app.dependencies.container import build_container
    from server import create_app

    def _build(engine: Optional[FakeEngine] = None, ai_enabled: bool = True):
        settings = reload_settings()
        if engine is None and ai_enabled:
            engine = FakeEngine()
        container = build_container(
            settings,
            ledger=ledger,
            plan_repository=plan_repository,
            engine=engine,
        )
        return create_app(settings=settings, container=container)

    return _build


@pytest.fixture
def client(app_factory):
    """FastAPI test client fixture."""
    from fastapi.testclient import TestClient

    return TestClient(app_factory())


# Test environment cleanup
@pytest.fixture(autouse=True)
def reset_environment():
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)

    from src.config import get_settings

    get_settings.cache_clear()
