"""
Async Postgres helpers for the usage ledger and plan-state store.

The pool is created lazily from DatabaseSettings. When no DATABASE_URL is
configured the helpers return empty results and the service runs on its
in-memory stores instead.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg

from src.config import get_settings

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS ai_usage_events (
        id UUID PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        tokens_used INTEGER NOT NULL DEFAULT 0 CHECK (tokens_used >= 0),
        cost DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (cost >= 0),
        timestamp TIMESTAMPTZ NOT NULL,
        month CHAR(7) NOT NULL,
        day CHAR(10) NOT NULL,
        idempotency_key TEXT
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ai_usage_events_idempotency
        ON ai_usage_events (user_id, idempotency_key)
        WHERE idempotency_key IS NOT NULL
    """,
    """
    CREATE INDEX IF NOT EXISTS ai_usage_events_user_day
        ON ai_usage_events (user_id, day)
    """,
    """
    CREATE INDEX IF NOT EXISTS ai_usage_events_user_month_type
        ON ai_usage_events (user_id, month, type)
    """,
    """
    CREATE TABLE IF NOT EXISTS ai_usage_summaries (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        month CHAR(7) NOT NULL,
        total_requests INTEGER NOT NULL DEFAULT 0,
        total_tokens BIGINT NOT NULL DEFAULT 0,
        total_cost DOUBLE PRECISION NOT NULL DEFAULT 0,
        last_updated TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_plan_states (
        user_id TEXT PRIMARY KEY,
        state JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)


def get_database_url() -> Optional[str]:
    """Prefer a direct (non-pooler) URL for long-lived backends if provided."""
    return get_settings().database.dsn


def is_database_configured() -> bool:
    return bool(get_database_url())


async def get_pool() -> Optional[asyncpg.Pool]:
    global _pool
    if _pool is not None:
        return _pool

    dsn = get_database_url()
    if not dsn:
        return None

    db_settings = get_settings().database

    # PgBouncer poolers break prepared statements.
    _pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=db_settings.database_pool_min_size,
        max_size=db_settings.database_pool_max_size,
        statement_cache_size=0,
    )

    logger.info(
        "Postgres pool initialized (min=%s max=%s)",
        db_settings.database_pool_min_size,
        db_settings.database_pool_max_size,
    )
    return _pool


async def fetchrow(query: str, *args):
    pool = await get_pool()
    if not pool:
        return None
    async with pool.acquire() as conn:
        return await conn.fetchrow(query, *args)


async def fetchval(query: str, *args):
    pool = await get_pool()
    if not pool:
        return None
    async with pool.acquire() as conn:
        return await conn.fetchval(query, *args)


async def fetch(query: str, *args):
    pool = await get_pool()
    if not pool:
        return []
    async with pool.acquire() as conn:
        return await conn.fetch(query, *args)


async def execute(query: str, *args):
    pool = await get_pool()
    if not pool:
        return None
    async with pool.acquire() as conn:
        return await conn.execute(query, *args)


@asynccontextmanager
async def transaction() -> AsyncIterator[asyncpg.Connection]:
    """Acquire a connection and run the block in one transaction."""
    pool = await get_pool()
    if not pool:
        raise RuntimeError("DATABASE_URL is not configured")
    async with pool.acquire() as conn:
        async with conn.transaction():
            yield conn


async def ensure_schema() -> None:
    """Create ledger and plan-state tables if they do not exist."""
    pool = await get_pool()
    if not pool:
        return
    async with pool.acquire() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
    logger.info("Usage schema verified")


async def close_pool() -> None:
    """Close the global asyncpg pool (used during graceful shutdown)."""
    global _pool
    if _pool is None:
        return
    try:
        await _pool.close()
    finally:
        _pool = None
