"""
Usage ledger port and the in-memory implementation.

Every accepted AI operation appends one immutable UsageEvent and bumps
the user's MonthlyUsageAggregate by exactly one request, in one atomic
unit. Aggregates are never overwritten with a read-modify-write.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Set, Tuple

from src.types.usage import FeatureType, MonthlyUsageAggregate, UsageEvent

logger = logging.getLogger(__name__)


class UsageLedgerPort(ABC):
    """Persistence for usage events and monthly aggregates."""

    backend_name = "abstract"

    @abstractmethod
    async def append_event(self, event: UsageEvent) -> bool:
        """
        Write event and increment its month's aggregate atomically.

        Returns False, without changing anything, when an event with the
        same idempotency key was already recorded for the user.
        """

    @abstractmethod
    async def monthly_aggregate(self, user_id: str, period_month: str) -> MonthlyUsageAggregate:
        """Aggregate for the month, or the zero value when none exists."""

    @abstractmethod
    async def daily_count(self, user_id: str, period_day: str) -> int:
        """Number of events on the given calendar day."""

    @abstractmethod
    async def analysis_count_for_month(self, user_id: str, period_month: str) -> int:
        """Number of analysis events in the month."""

    @abstractmethod
    async def feature_breakdown(self, user_id: str, period_month: str) -> Dict[str, int]:
        """Event counts per feature type for the month."""


class InMemoryUsageLedger(UsageLedgerPort):
    """
    Process-local ledger used in development and tests.

    A single asyncio.Lock makes event append + aggregate increment one
    critical section, which gives the same guarantees as the Postgres
    transaction within one event loop.
    """

    backend_name = "memory"

    def __init__(self):
        self._lock = asyncio.Lock()
        self._events: List[UsageEvent] = []
        self._aggregates: Dict[Tuple[str, str], MonthlyUsageAggregate] = {}
        self._idempotency_keys: Set[Tuple[str, str]] = set()

    @property
    def events(self) -> List[UsageEvent]:
        return list(self._events)

    async def append_event(self, event: UsageEvent) -> bool:
        async with self._lock:
            if event.idempotency_key is not None:
                marker = (event.user_id, event.idempotency_key)
                if marker in self._idempotency_keys:
                    logger.info(f"Duplicate usage event ignored: {event.idempotency_key}")
                    return False
                self._idempotency_keys.add(marker)

            self._events.append(event)

            key = (event.user_id, event.period_month)
            current = self._aggregates.get(key) or MonthlyUsageAggregate.empty(
                event.user_id, event.period_month
            )
            self._aggregates[key] = current.model_copy(
                update={
                    "total_requests": current.total_requests + 1,
                    "total_tokens": current.total_tokens + event.tokens_used,
                    "total_cost_usd": current.total_cost_usd + event.cost_usd,
                    "last_updated": datetime.now(timezone.utc),
                }
            )
            return True

    async def monthly_aggregate(self, user_id: str, period_month: str) -> MonthlyUsageAggregate:
        aggregate = self._aggregates.get((user_id, period_month))
        if aggregate is None:
            return MonthlyUsageAggregate.empty(user_id, period_month)
        return aggregate

    async def daily_count(self, user_id: str, period_day: str) -> int:
        return sum(
            1 for e in self._events
            if e.user_id == user_id and e.period_day == period_day
        )

    async def analysis_count_for_month(self, user_id: str, period_month: str) -> int:
        return sum(
            1 for e in self._events
            if e.user_id == user_id
            and e.period_month == period_month
            and e.feature_type == FeatureType.ANALYSIS
        )

    async def feature_breakdown(self, user_id: str, period_month: str) -> Dict[str, int]:
        counts = Counter(
            e.feature_type.value for e in self._events
            if e.user_id == user_id and e.period_month == period_month
        )
        return {feature.value: counts.get(feature.value, 0) for feature in FeatureType}
