"""
Tests for error handlers.

Tests exception translation, error sanitization, and response formatting.
"""

import json
import os
import sys
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

# Set environment before imports
os.environ["DEV_MODE"] = "true"
os.environ["ENVIRONMENT"] = "development"

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.error_handlers import (
    create_error_response,
    format_pydantic_errors,
    report_to_sentry,
    sanitize_details,
    sanitize_error_message,
    translate_usage_error,
)
from app.exceptions import (
    AITemporarilyUnavailableError,
    AnalysisRejectedError,
    DatabaseError,
    ErrorCode,
    ExternalServiceError,
    QuotaExceededError,
    ServiceUnavailableError,
)
from src.types.plans import PlanTier
from src.usage.errors import (
    AnalysisRejected,
    EngineError,
    LedgerUnavailableError,
    QuotaExceeded,
    TransientEngineError,
    UsageRecordingError,
)


class TestErrorMessageSanitization(unittest.TestCase):
    """Tests for error message sanitization."""

    def test_normal_message_unchanged(self):
        message = "monthly limit reached (5/month)"
        self.assertEqual(sanitize_error_message(message), message)

    def test_api_key_is_redacted(self):
        sanitized = sanitize_error_message("Invalid api_key: sk-abc123xyz")
        self.assertNotIn("sk-abc123xyz", sanitized)

    def test_connection_string_is_redacted(self):
        sanitized = sanitize_error_message("could not connect to postgresql://user:pw@db/prod")
        self.assertNotIn("pw@db", sanitized)

    def test_ip_address_is_redacted(self):
        sanitized = sanitize_error_message("Connection failed to 10.0.0.12:5432")
        self.assertNotIn("10.0.0.12", sanitized)

    def test_uuid_is_redacted(self):
        sanitized = sanitize_error_message("event 123e4567-e89b-12d3-a456-426614174000 failed")
        self.assertIn("[id]", sanitized)

    def test_long_message_truncated(self):
        self.assertLessEqual(len(sanitize_error_message("x" * 2000)), 503)


class TestDetailSanitization(unittest.TestCase):

    def test_unknown_keys_dropped(self):
        details = sanitize_details({"plan": "free", "stack": "Traceback ...", "sql": "SELECT"})
        self.assertEqual(details, {"plan": "free"})

    def test_validation_errors_capped(self):
        errors = [{"field": str(i), "message": "bad"} for i in range(25)]
        self.assertEqual(len(sanitize_details({"errors": errors})["errors"]), 10)

    def test_primitive_values_kept(self):
        details = sanitize_details({"usage_consumed": False, "reason": "too short"})
        self.assertEqual(details, {"usage_consumed": False, "reason": "too short"})


class TestPydanticErrorFormatting(unittest.TestCase):

    def test_missing_field(self):
        formatted = format_pydantic_errors(
            [{"loc": ("body", "feature_type"), "type": "missing", "msg": "Field required"}]
        )
        self.assertEqual(formatted, [{"field": "feature_type", "message": "Field 'feature_type' is required"}])

    def test_enum_field(self):
        formatted = format_pydantic_errors(
            [{"loc": ("body", "plan"), "type": "enum", "msg": "Input should be 'free', 'plus' or 'pro'"}]
        )
        self.assertEqual(formatted[0]["message"], "Field 'plan' has an invalid value")


class TestUsageErrorTranslation(unittest.TestCase):

    def test_quota_exceeded(self):
        reset = datetime(2026, 4, 11, tzinfo=timezone.utc)
        exc = translate_usage_error(
            QuotaExceeded("daily limit reached (5/day)", PlanTier.FREE, "daily", reset_date=reset)
        )
        self.assertIsInstance(exc, QuotaExceededError)
        self.assertEqual(exc.status_code, 429)
        self.assertEqual(exc.message, "daily limit reached (5/day)")
        self.assertEqual(exc.details["suggested_plan"], "plus")
        self.assertEqual(exc.details["limit_type"], "daily")
        self.assertEqual(exc.details["reset_date"], reset.isoformat())

    def test_quota_exceeded_on_top_tier_has_no_suggestion(self):
        exc = translate_usage_error(QuotaExceeded("monthly limit reached (200/month)", PlanTier.PRO, "monthly"))
        self.assertNotIn("suggested_plan", exc.details)

    def test_analysis_rejected(self):
        exc = translate_usage_error(AnalysisRejected("missing title"))
        self.assertIsInstance(exc, AnalysisRejectedError)
        self.assertEqual(exc.status_code, 422)
        self.assertEqual(exc.details, {"reason": "missing title", "usage_consumed": False})

    def test_transient_engine_error(self):
        exc = translate_usage_error(TransientEngineError("timeout"))
        self.assertIsInstance(exc, AITemporarilyUnavailableError)
        self.assertEqual(exc.status_code, 503)

    def test_engine_error(self):
        self.assertIsInstance(translate_usage_error(EngineError("bad request")), ExternalServiceError)

    def test_ledger_unavailable(self):
        self.assertIsInstance(translate_usage_error(LedgerUnavailableError("down")), DatabaseError)

    def test_recording_failure(self):
        exc = translate_usage_error(UsageRecordingError("down"))
        self.assertIsInstance(exc, ServiceUnavailableError)
        self.assertEqual(exc.error_code, ErrorCode.USAGE_RECORDING_FAILED)
        self.assertEqual(exc.internal_message, "down")


class TestErrorResponse(unittest.TestCase):

    def test_response_shape(self):
        response = create_error_response(429, "limit", "QUOTA_EXCEEDED", details={"plan": "free"})
        body = json.loads(response.body)
        self.assertEqual(
            body,
            {"success": False, "error": "limit", "error_code": "QUOTA_EXCEEDED", "details": {"plan": "free"}},
        )

    def test_headers_passed_through(self):
        response = create_error_response(503, "busy", "AI_TEMPORARILY_UNAVAILABLE", headers={"Retry-After": "30"})
        self.assertEqual(response.headers["Retry-After"], "30")


class TestSentryReporting(unittest.TestCase):

    def test_inactive_client_reports_nothing(self):
        client = MagicMock()
        client.is_active.return_value = False
        with patch("sentry_sdk.get_client", return_value=client), \
             patch("sentry_sdk.capture_exception") as capture:
            self.assertIsNone(report_to_sentry(RuntimeError("boom")))
        capture.assert_not_called()

    def test_active_client_captures(self):
        client = MagicMock()
        client.is_active.return_value = True
        with patch("sentry_sdk.get_client", return_value=client), \
             patch("sentry_sdk.capture_exception", return_value="evt-1") as capture:
            self.assertEqual(report_to_sentry(RuntimeError("boom")), "evt-1")
        capture.assert_called_once()


if __name__ == "__main__":
    unittest.main()
