"""
Tests for server-side metered AI operations.

Verifies that:
- Only accepted results consume quota
- Over-quota users never reach the engine
- Recording failures fail open and are reported to Sentry
- A cancelled caller does not cancel (or un-bill) the operation
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from src.plans.resolver import PlanResolver
from src.types.plan_state import UserPlanState
from src.types.plans import PlanTier
from src.types.usage import FeatureType
from src.usage.errors import (
    AnalysisRejected,
    QuotaExceeded,
    TransientEngineError,
    UsageRecordingError,
)
from src.usage.ledger import InMemoryUsageLedger
from src.usage.manager import UsageManager
from src.usage.metering import MeteredOperationRunner


class FailingLedger(InMemoryUsageLedger):
    async def append_event(self, event):
        raise UsageRecordingError("database is down")


@pytest.fixture
def make_runner(plan_repository, frozen_clock):
    def _make(engine, ledger=None):
        ledger = ledger or InMemoryUsageLedger()
        return MeteredOperationRunner(
            manager=UsageManager(ledger, clock=frozen_clock),
            engine=engine,
            resolver=PlanResolver(clock=frozen_clock),
            plan_repository=plan_repository,
        ), ledger

    return _make


class TestMeteredRun:

    @pytest.mark.asyncio
    async def test_accepted_result_is_recorded(self, make_runner, fake_engine):
        runner, ledger = make_runner(fake_engine)

        metered = await runner.run("u1", FeatureType.ANALYSIS, "Explain asyncio")

        assert metered.usage_recorded
        assert not metered.duplicate
        assert metered.result.tokens_used == 120
        assert len(ledger.events) == 1
        assert ledger.events[0].feature_type == FeatureType.ANALYSIS

    @pytest.mark.asyncio
    async def test_rejected_result_is_not_billed(self, make_runner, engine_factory):
        runner, ledger = make_runner(engine_factory(text="Too short."))

        with pytest.raises(AnalysisRejected) as exc_info:
            await runner.run("u1", FeatureType.ANALYSIS, "Explain asyncio")

        assert "usage counter was not consumed" in str(exc_info.value)
        assert ledger.events == []

    @pytest.mark.asyncio
    async def test_transient_error_is_not_billed(self, make_runner, engine_factory):
        runner, ledger = make_runner(engine_factory(error=TransientEngineError("deadline-exceeded")))

        with pytest.raises(TransientEngineError):
            await runner.run("u1", FeatureType.ANALYSIS, "Explain asyncio")

        assert ledger.events == []

    @pytest.mark.asyncio
    async def test_over_quota_never_calls_engine(self, make_runner, fake_engine):
        runner, ledger = make_runner(fake_engine)
        for _ in range(5):
            await runner.run("u1", FeatureType.ANALYSIS, "prompt")
        fake_engine.calls.clear()

        with pytest.raises(QuotaExceeded) as exc_info:
            await runner.run("u1", FeatureType.ANALYSIS, "prompt")

        assert fake_engine.calls == []
        assert exc_info.value.reason == "monthly limit reached (5/month)"
        assert exc_info.value.suggested_plan == PlanTier.PLUS
        assert exc_info.value.reset_date is not None
        assert len(ledger.events) == 5

    @pytest.mark.asyncio
    async def test_plan_state_drives_limits(self, make_runner, fake_engine, plan_repository):
        await plan_repository.save_user_plan_state(UserPlanState(user_id="u1", plan=PlanTier.PLUS))
        runner, ledger = make_runner(fake_engine)

        for _ in range(6):
            await runner.run("u1", FeatureType.TAGS, "prompt")

        assert len(ledger.events) == 6

    @pytest.mark.asyncio
    async def test_recording_failure_fails_open(self, make_runner, fake_engine):
        runner, _ = make_runner(fake_engine, ledger=FailingLedger())

        metered = await runner.run("u1", FeatureType.ANALYSIS, "prompt")

        assert metered.result.text
        assert not metered.usage_recorded

    @pytest.mark.asyncio
    async def test_recording_failure_is_reported_to_sentry(self, make_runner, fake_engine):
        runner, _ = make_runner(fake_engine, ledger=FailingLedger())

        with patch("sentry_sdk.capture_exception") as capture:
            metered = await runner.run("u1", FeatureType.ANALYSIS, "prompt")

        assert not metered.usage_recorded
        capture.assert_called_once()
        assert isinstance(capture.call_args.args[0], UsageRecordingError)

    @pytest.mark.asyncio
    async def test_successful_record_reports_nothing(self, make_runner, fake_engine):
        runner, _ = make_runner(fake_engine)

        with patch("sentry_sdk.capture_exception") as capture:
            await runner.run("u1", FeatureType.ANALYSIS, "prompt")

        capture.assert_not_called()

    @pytest.mark.asyncio
    async def test_retry_with_same_key_is_not_double_billed(self, make_runner, fake_engine):
        runner, ledger = make_runner(fake_engine)

        first = await runner.run("u1", FeatureType.ANALYSIS, "prompt", idempotency_key="op-7")
        second = await runner.run("u1", FeatureType.ANALYSIS, "prompt", idempotency_key="op-7")

        assert first.usage_recorded
        assert second.duplicate
        assert not second.usage_recorded
        assert len(ledger.events) == 1


class BlockingEngine:
    """Engine that waits for release before returning a valid result."""

    def __init__(self, result_engine):
        self._inner = result_engine
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, prompt, context=()):
        self.started.set()
        await self.release.wait()
        return await self._inner.generate(prompt, context)


class TestShieldedRun:

    @pytest.mark.asyncio
    async def test_cancelled_caller_still_bills_accepted_result(self, make_runner, fake_engine):
        engine = BlockingEngine(fake_engine)
        runner, ledger = make_runner(engine)

        caller = asyncio.create_task(runner.run_shielded("u1", FeatureType.ANALYSIS, "prompt"))
        await engine.started.wait()
        assert runner.in_flight == 1

        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        engine.release.set()
        await runner.drain()

        assert len(ledger.events) == 1

    @pytest.mark.asyncio
    async def test_run_shielded_returns_result(self, make_runner, fake_engine):
        runner, ledger = make_runner(fake_engine)
        metered = await runner.run_shielded("u1", FeatureType.SUMMARY, "prompt")
        assert metered.usage_recorded
        assert len(ledger.events) == 1

    @pytest.mark.asyncio
    async def test_drain_with_nothing_in_flight(self, make_runner, fake_engine):
        runner, _ = make_runner(fake_engine)
        await runner.drain()
        assert runner.in_flight == 0


def test_reset_date_uses_frozen_clock(frozen_clock):
    resolver = PlanResolver(clock=frozen_clock)
    state = UserPlanState(user_id="u1", start_date=datetime(2026, 1, 20, tzinfo=timezone.utc))
    assert resolver.reset_date(state) == datetime(2026, 3, 20, tzinfo=timezone.utc)
