"""
Tests for the usage client SDK.

The HTTP side is served by httpx.MockTransport, so these tests check the
client's contract (fail-closed checks, cache invalidation, metered runs)
without a server.
"""

import json

import httpx
import pytest

from src.analysis.engine import AnalysisResult
from src.types.plans import PlanTier
from src.types.usage import FeatureType
from src.usage.client import SERVER_ERROR_REASON, UsageClient
from src.usage.errors import UsageRecordingError


class FakeUsageServer:
    """Minimal /usage API with configurable failures."""

    def __init__(self):
        self.allowed = True
        self.fail_with = None
        self.recorded = []
        self.stats_requests = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer id-token"
        if self.fail_with is not None:
            return httpx.Response(self.fail_with)

        if request.url.path == "/usage/check":
            if self.allowed:
                return httpx.Response(200, json={"allowed": True})
            return httpx.Response(
                200,
                json={"allowed": False, "reason": "daily limit reached (5/day)", "limit_type": "daily"},
            )
        if request.url.path == "/usage/record":
            self.recorded.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "duplicate": False})
        if request.url.path == "/usage/stats":
            self.stats_requests += 1
            return httpx.Response(
                200,
                json={"current_month": {"total_requests": len(self.recorded)}, "today_usage": 0},
            )
        return httpx.Response(404)


async def token_provider() -> str:
    return "id-token"


@pytest.fixture
def server():
    return FakeUsageServer()


@pytest.fixture
def usage_client(server):
    http = httpx.AsyncClient(transport=httpx.MockTransport(server.handler), base_url="http://test")
    return UsageClient("http://test", user_id="u1", token_provider=token_provider, http_client=http)


def analysis(text: str) -> AnalysisResult:
    return AnalysisResult(text=text, tokens_used=90, cost_usd=0.0003, model_id="gpt-4o-mini")


GOOD_TEXT = (
    "## Rust ownership\n"
    "- Every value has exactly one owner\n"
    "- Borrowing lets code read without taking ownership\n"
)


class TestCheck:

    @pytest.mark.asyncio
    async def test_allowed(self, usage_client):
        result = await usage_client.check_usage_limit(PlanTier.FREE, FeatureType.ANALYSIS)
        assert result.allowed

    @pytest.mark.asyncio
    async def test_denied_reason_passes_through(self, usage_client, server):
        server.allowed = False
        result = await usage_client.check_usage_limit(PlanTier.FREE, FeatureType.ANALYSIS)
        assert not result.allowed
        assert result.reason == "daily limit reached (5/day)"
        assert result.limit_type == "daily"

    @pytest.mark.asyncio
    async def test_server_error_fails_closed(self, usage_client, server):
        server.fail_with = 500
        result = await usage_client.check_usage_limit(PlanTier.FREE, FeatureType.ANALYSIS)
        assert not result.allowed
        assert result.reason == SERVER_ERROR_REASON

    @pytest.mark.asyncio
    async def test_transport_error_fails_closed(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        client = UsageClient("http://test", "u1", token_provider, http_client=http)

        result = await client.check_usage_limit(PlanTier.PLUS, FeatureType.TAGS)
        assert not result.allowed
        assert result.reason == SERVER_ERROR_REASON


class TestRecordAndStats:

    @pytest.mark.asyncio
    async def test_record_sends_idempotency_key(self, usage_client, server):
        await usage_client.record_usage(FeatureType.SUMMARY, 90, 0.0003, idempotency_key="op-1")
        assert server.recorded == [
            {
                "feature_type": "summary",
                "tokens_used": 90,
                "cost_usd": 0.0003,
                "idempotency_key": "op-1",
            }
        ]

    @pytest.mark.asyncio
    async def test_record_failure_raises(self, usage_client, server):
        server.fail_with = 503
        with pytest.raises(UsageRecordingError):
            await usage_client.record_usage(FeatureType.SUMMARY, 90, 0.0003, idempotency_key="op-1")

    @pytest.mark.asyncio
    async def test_stats_are_cached_until_record(self, usage_client, server):
        await usage_client.get_usage_stats()
        await usage_client.get_usage_stats()
        assert server.stats_requests == 1

        await usage_client.record_usage(FeatureType.TAGS, 10, 0.0, idempotency_key="op-2")
        stats = await usage_client.get_usage_stats()
        assert server.stats_requests == 2
        assert stats.current_month.total_requests == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_after_record_keeps_last_known_stats(self, usage_client, server):
        await usage_client.record_usage(FeatureType.SUMMARY, 10, 0.0, idempotency_key="op-3")
        assert (await usage_client.get_usage_stats()).current_month.total_requests == 1

        await usage_client.record_usage(FeatureType.SUMMARY, 10, 0.0, idempotency_key="op-4")
        server.fail_with = 500
        stats = await usage_client.get_usage_stats()

        assert server.stats_requests == 1
        assert stats.current_month.total_requests == 1

    @pytest.mark.asyncio
    async def test_stats_zero_when_server_never_reached(self, usage_client, server):
        server.fail_with = 500
        stats = await usage_client.get_usage_stats()
        assert stats.current_month.total_requests == 0


class TestRunMetered:

    @pytest.mark.asyncio
    async def test_accepted_result_is_recorded(self, usage_client, server):
        async def operation():
            return analysis(GOOD_TEXT)

        outcome = await usage_client.run_metered(PlanTier.FREE, FeatureType.ANALYSIS, operation)

        assert outcome.allowed
        assert outcome.usage_recorded
        assert len(server.recorded) == 1
        assert server.recorded[0]["idempotency_key"]

    @pytest.mark.asyncio
    async def test_denied_check_skips_operation(self, usage_client, server):
        server.allowed = False
        called = []

        async def operation():
            called.append(True)
            return analysis(GOOD_TEXT)

        outcome = await usage_client.run_metered(PlanTier.FREE, FeatureType.ANALYSIS, operation)

        assert not outcome.allowed
        assert called == []
        assert server.recorded == []

    @pytest.mark.asyncio
    async def test_rejected_result_is_not_recorded(self, usage_client, server):
        async def operation():
            return analysis("Sorry, I could not help with that.")

        outcome = await usage_client.run_metered(PlanTier.FREE, FeatureType.ANALYSIS, operation)

        assert outcome.result is not None
        assert not outcome.usage_recorded
        assert outcome.reason.startswith("too short")
        assert server.recorded == []

    @pytest.mark.asyncio
    async def test_transient_failure_is_not_recorded(self, usage_client, server):
        async def operation():
            raise TimeoutError("deadline-exceeded")

        outcome = await usage_client.run_metered(PlanTier.FREE, FeatureType.ANALYSIS, operation)

        assert outcome.decision.transient
        assert server.recorded == []
