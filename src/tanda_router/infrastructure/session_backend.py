"""Durable session backends: Protocol + asyncpg implementation + in-memory rows."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import asyncpg

from tanda_router.config.models import DatabaseConfig
from tanda_router.domain.errors import BackendUnavailableError

if TYPE_CHECKING:
    from asyncpg import Pool

logger = logging.getLogger(__name__)

Row = dict[str, Any]


@runtime_checkable
class SessionBackend(Protocol):
    """Row-level access to the session table. Implementations may raise on I/O failure."""

    async def fetch(self, app_name: str, session_id: str) -> Row | None:
        ...

    async def fetch_for_user(self, app_name: str, user_id: str) -> list[Row]:
        """Rows for one user, most recently updated first."""
        ...

    async def insert(self, row: Row) -> bool:
        """Insert a new row. Returns False, leaving the stored row untouched, if the id exists."""
        ...

    async def update(self, row: Row) -> bool:
        """Overwrite events, state and last_update_time. Returns False if no row matched."""
        ...

    async def delete(self, session_id: str) -> None:
        ...


class InMemorySessionBackend:
    """In-memory dict of rows. Suitable for single process; no persistence."""

    def __init__(self) -> None:
        self.rows: dict[str, Row] = {}

    async def fetch(self, app_name: str, session_id: str) -> Row | None:
        row = self.rows.get(session_id)
        if row is None or row["app_name"] != app_name:
            return None
        return dict(row)

    async def fetch_for_user(self, app_name: str, user_id: str) -> list[Row]:
        rows = [
            dict(r)
            for r in self.rows.values()
            if r["app_name"] == app_name and r["user_id"] == user_id
        ]
        rows.sort(key=lambda r: r["last_update_time"], reverse=True)
        return rows

    async def insert(self, row: Row) -> bool:
        if row["session_id"] in self.rows:
            return False
        self.rows[row["session_id"]] = dict(row)
        return True

    async def update(self, row: Row) -> bool:
        existing = self.rows.get(row["session_id"])
        if existing is None:
            return False
        stored = dict(row)
        stored["created_at"] = existing["created_at"]
        self.rows[row["session_id"]] = stored
        return True

    async def delete(self, session_id: str) -> None:
        self.rows.pop(session_id, None)


class PostgresSessionBackend:
    """PostgreSQL session table via an asyncpg pool.

    Table Schema:
        session_id TEXT PRIMARY KEY, app_name TEXT, user_id TEXT,
        events JSONB, state JSONB, last_update_time TIMESTAMPTZ,
        created_at TIMESTAMPTZ

    Example:
        >>> backend = PostgresSessionBackend(DatabaseConfig(dsn="postgresql://..."))
        >>> await backend.initialize()
        >>> try:
        ...     row = await backend.fetch("pasatanda", "pasatanda:59177242197")
        ... finally:
        ...     await backend.close()
    """

    def __init__(self, config: DatabaseConfig) -> None:
        if not config.dsn:
            raise ValueError("DatabaseConfig.dsn is required for PostgresSessionBackend")
        self._config = config
        self._table = config.table
        self._pool: Pool | None = None

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    async def initialize(self) -> None:
        """Create the connection pool and make sure the table exists."""
        if self._pool is not None:
            logger.warning("PostgresSessionBackend already initialized, skipping")
            return
        self._pool = await asyncpg.create_pool(
            dsn=self._config.dsn,
            min_size=self._config.pool_min_size,
            max_size=self._config.pool_max_size,
            command_timeout=self._config.query_timeout_seconds,
        )
        await self.ensure_schema()
        logger.info(
            "PostgresSessionBackend initialized",
            extra={
                "table": self._table,
                "pool_min_size": self._config.pool_min_size,
                "pool_max_size": self._config.pool_max_size,
            },
        )

    async def close(self) -> None:
        """Close the pool. Safe to call multiple times."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("PostgresSessionBackend closed")

    def _require_pool(self) -> Pool:
        if self._pool is None:
            raise BackendUnavailableError(
                "PostgresSessionBackend not initialized. Call initialize() first."
            )
        return self._pool

    async def ensure_schema(self) -> None:
        pool = self._require_pool()
        await pool.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                session_id TEXT PRIMARY KEY,
                app_name TEXT NOT NULL,
                user_id TEXT NOT NULL,
                events JSONB NOT NULL DEFAULT '[]'::jsonb,
                state JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                last_update_time TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        await pool.execute(
            f"CREATE INDEX IF NOT EXISTS {self._table}_app_user_idx "
            f"ON {self._table} (app_name, user_id)"
        )

    async def fetch(self, app_name: str, session_id: str) -> Row | None:
        pool = self._require_pool()
        record = await pool.fetchrow(
            f"""
            SELECT session_id, app_name, user_id, events, state, last_update_time, created_at
            FROM {self._table}
            WHERE session_id = $1 AND app_name = $2
            LIMIT 1
            """,
            session_id,
            app_name,
        )
        return dict(record) if record is not None else None

    async def fetch_for_user(self, app_name: str, user_id: str) -> list[Row]:
        pool = self._require_pool()
        records = await pool.fetch(
            f"""
            SELECT session_id, app_name, user_id, events, state, last_update_time, created_at
            FROM {self._table}
            WHERE app_name = $1 AND user_id = $2
            ORDER BY last_update_time DESC
            """,
            app_name,
            user_id,
        )
        return [dict(r) for r in records]

    async def insert(self, row: Row) -> bool:
        pool = self._require_pool()
        inserted = await pool.fetchval(
            f"""
            INSERT INTO {self._table}
                (session_id, app_name, user_id, events, state, last_update_time, created_at)
            VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6, $7)
            ON CONFLICT (session_id) DO NOTHING
            RETURNING session_id
            """,
            row["session_id"],
            row["app_name"],
            row["user_id"],
            row["events"],
            row["state"],
            row["last_update_time"],
            row["created_at"],
        )
        return inserted is not None

    async def update(self, row: Row) -> bool:
        pool = self._require_pool()
        status = await pool.execute(
            f"""
            UPDATE {self._table}
            SET events = $2::jsonb, state = $3::jsonb, last_update_time = $4
            WHERE session_id = $1
            """,
            row["session_id"],
            row["events"],
            row["state"],
            row["last_update_time"],
        )
        # asyncpg returns the command tag, e.g. "UPDATE 1".
        return status != "UPDATE 0"

    async def delete(self, session_id: str) -> None:
        pool = self._require_pool()
        await pool.execute(f"DELETE FROM {self._table} WHERE session_id = $1", session_id)
