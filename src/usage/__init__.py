"""
AI usage metering.

This package provides the usage ledger (in-memory and Postgres), the
usage manager that enforces plan quotas, and the acceptance predicate
that decides which AI results are billable. The metered runner, the
client SDK and the client cache live in their own modules
(src.usage.metering, src.usage.client, src.usage.cache).
"""

from .acceptance import AcceptanceCriteria, AcceptanceDecision, evaluate_analysis, is_transient_error
from .errors import (
    AnalysisRejected,
    EngineError,
    LedgerUnavailableError,
    QuotaExceeded,
    TransientEngineError,
    UsageError,
    UsageRecordingError,
)
from .ledger import InMemoryUsageLedger, UsageLedgerPort
from .manager import UsageManager

__all__ = [
    "AcceptanceCriteria",
    "AcceptanceDecision",
    "evaluate_analysis",
    "is_transient_error",
    "UsageError",
    "QuotaExceeded",
    "AnalysisRejected",
    "TransientEngineError",
    "EngineError",
    "UsageRecordingError",
    "LedgerUnavailableError",
    "UsageLedgerPort",
    "InMemoryUsageLedger",
    "UsageManager",
]
