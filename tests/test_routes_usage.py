"""
Tests for the HTTP API.

Runs the FastAPI app against in-memory services. DEV_MODE is on, so the
bearer value is the caller's uid.
"""

import pytest
from fastapi.testclient import TestClient

from src.types.plan_state import UserPlanState
from src.types.plans import PlanTier
from src.usage.errors import TransientEngineError


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {user_id}"}


def record(client, user_id="u1", feature="analysis", key=None):
    body = {"feature_type": feature, "tokens_used": 100, "cost_usd": 0.001}
    if key:
        body["idempotency_key"] = key
    return client.post("/usage/record", json=body, headers=auth(user_id))


class TestAuthentication:

    def test_missing_token_is_401(self, client):
        response = client.get("/usage/stats")
        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTHENTICATION_REQUIRED"

    def test_acting_for_another_user_is_403(self, client):
        response = client.post(
            "/usage/check",
            json={"user_id": "someone-else", "plan": "free", "feature_type": "analysis"},
            headers=auth("u1"),
        )
        assert response.status_code == 403
        assert response.json()["error_code"] == "PERMISSION_DENIED"


class TestUsageEndpoints:

    def test_check_allows_fresh_user(self, client):
        response = client.post(
            "/usage/check",
            json={"plan": "free", "feature_type": "analysis"},
            headers=auth("u1"),
        )
        assert response.status_code == 200
        assert response.json()["allowed"] is True

    def test_check_denies_after_monthly_quota(self, client):
        for _ in range(5):
            assert record(client).status_code == 200

        response = client.post(
            "/usage/check",
            json={"plan": "free", "feature_type": "summary"},
            headers=auth("u1"),
        )
        data = response.json()
        assert data["allowed"] is False
        assert data["reason"] == "monthly limit reached (5/month)"
        assert data["limit_type"] == "monthly"

    def test_check_applies_test_account_override(self, client, plan_repository):
        import asyncio

        asyncio.run(
            plan_repository.save_user_plan_state(
                UserPlanState(user_id="qa", is_test_account=True, test_override_plan=PlanTier.PRO)
            )
        )
        for _ in range(6):
            record(client, user_id="qa")

        response = client.post(
            "/usage/check",
            json={"plan": "free", "feature_type": "analysis"},
            headers=auth("qa"),
        )
        assert response.json()["allowed"] is True

    def test_record_is_idempotent(self, client, ledger):
        first = record(client, key="op-1").json()
        second = record(client, key="op-1").json()

        assert first == {"success": True, "duplicate": False}
        assert second == {"success": True, "duplicate": True}
        assert len(ledger.events) == 1

    def test_record_rejects_negative_tokens(self, client):
        response = client.post(
            "/usage/record",
            json={"feature_type": "tags", "tokens_used": -5, "cost_usd": 0},
            headers=auth("u1"),
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_record_rejects_unknown_feature(self, client):
        response = client.post(
            "/usage/record",
            json={"feature_type": "translate", "tokens_used": 5, "cost_usd": 0},
            headers=auth("u1"),
        )
        assert response.status_code == 422

    def test_stats_include_plan_and_remaining(self, client):
        record(client)
        record(client, feature="summary")

        response = client.get("/usage/stats", headers=auth("u1"))
        assert response.status_code == 200
        data = response.json()
        assert data["current_month"]["total_requests"] == 2
        assert data["today_usage"] == 2
        assert data["analysis_usage"] == 1
        assert data["plan"] == "free"
        assert data["monthly_limit"] == 5
        assert data["remaining"] == 3
        assert data["reset_date"] is not None

    def test_stats_for_new_user_are_zero(self, client):
        data = client.get("/usage/stats", headers=auth("brand-new")).json()
        assert data["current_month"]["total_requests"] == 0
        assert data["remaining"] == 5
        assert data["recommendations"] == []

    def test_breakdown(self, client):
        record(client, feature="tags")
        record(client, feature="tags")
        record(client, feature="analysis")

        data = client.get("/usage/breakdown", headers=auth("u1")).json()
        assert data["counts"] == {"summary": 0, "tags": 2, "analysis": 1}
        assert data["total"] == 3


class TestPlanEndpoints:

    def test_list_plans_is_public(self, client):
        response = client.get("/plans")
        assert response.status_code == 200
        plans = response.json()["plans"]
        assert [p["name"] for p in plans] == ["free", "plus", "pro"]
        assert plans[1]["pricing"]["amount"] == 480

    def test_my_plan_for_test_account(self, client, plan_repository):
        import asyncio

        asyncio.run(
            plan_repository.save_user_plan_state(
                UserPlanState(user_id="qa", is_test_account=True, test_override_plan=PlanTier.PLUS)
            )
        )
        data = client.get("/plans/me", headers=auth("qa")).json()
        assert data["plan"] == "plus"
        assert data["display_name"] == "Plus (test)"
        assert data["is_test_account"] is True
        assert data["limits"]["ai_monthly_quota"] == 50

    def test_my_plan_defaults_to_free(self, client):
        data = client.get("/plans/me", headers=auth("u1")).json()
        assert data["plan"] == "free"
        assert data["display_name"] == "Free"
        assert data["pending_downgrade_to"] is None


GOOD_TEXT = (
    "## Async Python\n"
    "- asyncio runs coroutines on a single event loop\n"
    "- gather runs independent awaits concurrently\n"
)


class TestAnalyzeEndpoint:

    def test_accepted_analysis_is_billed(self, client, ledger):
        response = client.post(
            "/ai/analyze",
            json={"prompt": "Explain asyncio", "idempotency_key": "op-9"},
            headers=auth("u1"),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["usage_recorded"] is True
        assert data["text"].startswith("## ")
        assert data["context_pages"] == 0
        assert len(ledger.events) == 1

    def test_rejected_analysis_is_422_and_not_billed(self, app_factory, engine_factory, ledger):
        client = TestClient(app_factory(engine=engine_factory(text="No idea.")))

        response = client.post("/ai/analyze", json={"prompt": "Explain asyncio"}, headers=auth("u1"))

        assert response.status_code == 422
        body = response.json()
        assert body["error_code"] == "ANALYSIS_REJECTED"
        assert body["details"]["usage_consumed"] is False
        assert body["details"]["reason"].startswith("too short")
        assert ledger.events == []

    def test_transient_engine_error_is_503(self, app_factory, engine_factory, ledger):
        engine = engine_factory(error=TransientEngineError("deadline-exceeded"))
        client = TestClient(app_factory(engine=engine))

        response = client.post("/ai/analyze", json={"prompt": "Explain asyncio"}, headers=auth("u1"))

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        assert response.json()["error_code"] == "AI_TEMPORARILY_UNAVAILABLE"
        assert ledger.events == []

    def test_over_quota_is_429_with_upgrade_hint(self, app_factory, fake_engine):
        client = TestClient(app_factory(engine=fake_engine))
        for _ in range(5):
            record(client)

        response = client.post("/ai/analyze", json={"prompt": "Explain asyncio"}, headers=auth("u1"))

        assert response.status_code == 429
        body = response.json()
        assert body["error_code"] == "QUOTA_EXCEEDED"
        assert body["error"] == "monthly limit reached (5/month)"
        assert body["details"]["limit_type"] == "monthly"
        assert body["details"]["suggested_plan"] == "plus"
        assert body["details"]["upgrade_url"] == "/plans"
        assert "reset_date" in body["details"]
        assert fake_engine.calls == []

    @pytest.mark.parametrize("feature", ["tags", "summary"])
    def test_non_analysis_features_are_refused_before_generation(self, app_factory, fake_engine, ledger, feature):
        client = TestClient(app_factory(engine=fake_engine))

        response = client.post(
            "/ai/analyze",
            json={"feature_type": feature, "prompt": "react, hooks, frontend"},
            headers=auth("u1"),
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"
        assert fake_engine.calls == []
        assert ledger.events == []

    def test_analysis_disabled_without_engine(self, app_factory):
        client = TestClient(app_factory(ai_enabled=False))
        response = client.post("/ai/analyze", json={"prompt": "Explain asyncio"}, headers=auth("u1"))
        assert response.status_code == 503

    def test_rejects_too_many_context_urls(self, client):
        urls = [f"https://example.com/{i}" for i in range(11)]
        response = client.post(
            "/ai/analyze",
            json={"prompt": "Explain", "context_urls": urls},
            headers=auth("u1"),
        )
        assert response.status_code == 422


class TestHealth:

    def test_health_reports_backend(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["storage_backend"] == "memory"
        assert data["analysis_enabled"] is True

    @pytest.mark.parametrize("path", ["/usage/stats", "/usage/breakdown", "/plans/me"])
    def test_authenticated_routes_require_token(self, client, path):
        assert client.get(path).status_code == 401
