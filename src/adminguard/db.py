"""Postgres access for second-factor records: one shared async pool, row helpers and schema."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from typing import Any

import psycopg
import psycopg.rows
import psycopg_pool

from adminguard.config import settings

_pool: psycopg_pool.AsyncConnectionPool | None = None

SCHEMA = """
CREATE TABLE IF NOT EXISTS admin_2fa_settings (
    id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id         TEXT NOT NULL UNIQUE,
    totp_secret     TEXT,
    is_provisioned  BOOLEAN NOT NULL DEFAULT FALSE,
    is_blocked      BOOLEAN NOT NULL DEFAULT FALSE,
    failed_attempts INTEGER NOT NULL DEFAULT 0 CHECK (failed_attempts >= 0),
    last_failed_at  TIMESTAMPTZ,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS second_factor_events (
    id          BIGSERIAL PRIMARY KEY,
    timestamp   TIMESTAMPTZ NOT NULL DEFAULT now(),
    severity    TEXT NOT NULL,
    event_type  TEXT NOT NULL,
    user_id     TEXT,
    message     TEXT NOT NULL,
    context     JSONB NOT NULL DEFAULT '{}'::jsonb
);

CREATE INDEX IF NOT EXISTS second_factor_events_user_idx
    ON second_factor_events (user_id, timestamp DESC);
"""


Row = dict[str, Any]


async def init_pool(
    conninfo: str | None = None,
    *,
    min_size: int = 1,
    max_size: int = 5,
) -> psycopg_pool.AsyncConnectionPool:
    """Open the shared pool once; later calls reuse it."""
    global _pool
    if _pool is None:
        pool = psycopg_pool.AsyncConnectionPool(
            conninfo or settings.database_url,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": psycopg.rows.dict_row},
            open=False,
        )
        await pool.open()
        _pool = pool
    return _pool


async def close_pool() -> None:
    global _pool
    pool, _pool = _pool, None
    if pool is not None:
        await pool.close()


def pool_is_open() -> bool:
    return _pool is not None


@contextlib.asynccontextmanager
async def connection() -> AsyncIterator[psycopg.AsyncConnection[Row]]:
    """A pooled connection. Its transaction commits when the block exits cleanly."""
    if _pool is None:
        raise RuntimeError("Database pool is not open; call init_pool() first")
    async with _pool.connection() as conn:
        yield conn


async def _rows(query: str, params: tuple[Any, ...] | None, limit: int | None) -> list[Row]:
    async with connection() as conn, conn.cursor() as cur:
        await cur.execute(query, params)
        if cur.description is None:
            return []
        return await (cur.fetchmany(limit) if limit else cur.fetchall())


async def fetch_all(query: str, params: tuple[Any, ...] | None = None) -> list[Row]:
    return await _rows(query, params, None)


async def fetch_one(query: str, params: tuple[Any, ...] | None = None) -> Row | None:
    """First row of a statement's result, e.g. an UPDATE ... RETURNING."""
    rows = await _rows(query, params, 1)
    return rows[0] if rows else None


async def ensure_schema() -> None:
    """Create tables and indexes if they do not exist."""
    async with connection() as conn:
        await conn.execute(SCHEMA)
