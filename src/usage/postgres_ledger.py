"""
Postgres-backed usage ledger.

Tables (see src/db.py for DDL):
- ai_usage_events: one row per accepted AI operation
- ai_usage_summaries: one row per user per month, id "{user_id}_{YYYY-MM}"

append_event runs the event insert and the aggregate upsert in a single
transaction. The aggregate is bumped with SQL arithmetic, so concurrent
appends never lose an increment.
"""

import logging
import uuid
from typing import Dict

from src.db import fetch as db_fetch, fetchrow as db_fetchrow, fetchval as db_fetchval, transaction
from src.types.usage import FeatureType, MonthlyUsageAggregate, UsageEvent, summary_key
from src.utils.logging import Timer, mask_user_id

from .errors import LedgerUnavailableError, UsageRecordingError
from .ledger import UsageLedgerPort

logger = logging.getLogger(__name__)

INSERT_EVENT_SQL = """
    INSERT INTO ai_usage_events
        (id, user_id, type, tokens_used, cost, timestamp, month, day, idempotency_key)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
    ON CONFLICT (user_id, idempotency_key) WHERE idempotency_key IS NOT NULL
    DO NOTHING
    RETURNING id
"""

UPSERT_SUMMARY_SQL = """
    INSERT INTO ai_usage_summaries
        (id, user_id, month, total_requests, total_tokens, total_cost, last_updated)
    VALUES ($1, $2, $3, 1, $4, $5, NOW())
    ON CONFLICT (id) DO UPDATE
    SET total_requests = ai_usage_summaries.total_requests + 1,
        total_tokens = ai_usage_summaries.total_tokens + EXCLUDED.total_tokens,
        total_cost = ai_usage_summaries.total_cost + EXCLUDED.total_cost,
        last_updated = NOW()
"""


class PostgresUsageLedger(UsageLedgerPort):
    """Ledger stored in Postgres via the shared asyncpg pool."""

    backend_name = "postgres"

    async def append_event(self, event: UsageEvent) -> bool:
        try:
            with Timer("ledger.append_event", logger):
                async with transaction() as conn:
                    inserted = await conn.fetchval(
                        INSERT_EVENT_SQL,
                        uuid.UUID(event.id),
                        event.user_id,
                        event.feature_type.value,
                        event.tokens_used,
                        event.cost_usd,
                        event.occurred_at,
                        event.period_month,
                        event.period_day,
                        event.idempotency_key,
                    )
                    if inserted is None:
                        logger.info(
                            f"Duplicate usage event ignored for user "
                            f"{mask_user_id(event.user_id)}: {event.idempotency_key}"
                        )
                        return False

                    await conn.execute(
                        UPSERT_SUMMARY_SQL,
                        summary_key(event.user_id, event.period_month),
                        event.user_id,
                        event.period_month,
                        event.tokens_used,
                        event.cost_usd,
                    )
            return True
        except Exception as e:
            logger.error(f"Database error recording usage: {e}")
            raise UsageRecordingError(str(e)) from e

    async def monthly_aggregate(self, user_id: str, period_month: str) -> MonthlyUsageAggregate:
        try:
            row = await db_fetchrow(
                """
                SELECT total_requests, total_tokens, total_cost, last_updated
                FROM ai_usage_summaries
                WHERE id = $1
                """,
                summary_key(user_id, period_month),
            )
        except Exception as e:
            logger.error(f"Database error reading usage summary: {e}")
            raise LedgerUnavailableError(str(e)) from e

        if not row:
            return MonthlyUsageAggregate.empty(user_id, period_month)

        return MonthlyUsageAggregate(
            user_id=user_id,
            period_month=period_month,
            total_requests=int(row["total_requests"] or 0),
            total_tokens=int(row["total_tokens"] or 0),
            total_cost_usd=float(row["total_cost"] or 0.0),
            last_updated=row["last_updated"],
        )

    async def daily_count(self, user_id: str, period_day: str) -> int:
        return await self._count(
            "SELECT COUNT(*) FROM ai_usage_events WHERE user_id = $1 AND day = $2",
            user_id,
            period_day,
        )

    async def analysis_count_for_month(self, user_id: str, period_month: str) -> int:
        return await self._count(
            """
            SELECT COUNT(*) FROM ai_usage_events
            WHERE user_id = $1 AND month = $2 AND type = $3
            """,
            user_id,
            period_month,
            FeatureType.ANALYSIS.value,
        )

    async def feature_breakdown(self, user_id: str, period_month: str) -> Dict[str, int]:
        breakdown = {feature.value: 0 for feature in FeatureType}
        try:
            rows = await db_fetch(
                """
                SELECT type, COUNT(*) AS count
                FROM ai_usage_events
                WHERE user_id = $1 AND month = $2
                GROUP BY type
                """,
                user_id,
                period_month,
            )
        except Exception as e:
            logger.error(f"Database error getting usage breakdown: {e}")
            raise LedgerUnavailableError(str(e)) from e

        for row in rows or []:
            feature = str(row["type"])
            if feature in breakdown:
                breakdown[feature] += int(row["count"] or 0)
        return breakdown

    async def _count(self, query: str, *args) -> int:
        try:
            value = await db_fetchval(query, *args)
        except Exception as e:
            logger.error(f"Database error counting usage: {e}")
            raise LedgerUnavailableError(str(e)) from e
        return int(value or 0)
