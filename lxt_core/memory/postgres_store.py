from __future__ import annotations

import asyncio
import logging
from typing import Any

import asyncpg

from .models import JSON_FIELDS, STATE_FIELDS, UserState, encode_column, normalize_patch

logger = logging.getLogger("lxt_core.memory")

_META_SQL = """
CREATE TABLE IF NOT EXISTS state_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS user_state (
    user_id TEXT PRIMARY KEY,
    behavior_profile JSONB,
    voice_profile TEXT NOT NULL DEFAULT '',
    voice_profile_updated_at TEXT,
    last_topic JSONB,
    plan_tier TEXT NOT NULL DEFAULT 'core',
    preferred_email_provider TEXT,
    last_city TEXT,
    last_country TEXT,
    last_timezone TEXT,
    last_alert_hash TEXT,
    last_proactive_at TEXT,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS user_memory (
    memory_id BIGSERIAL PRIMARY KEY,
    user_id TEXT NOT NULL,
    text TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_user_memory_recent
ON user_memory(user_id, memory_id DESC);
"""

# Statements keyed by the schema version that introduced them. All are idempotent.
_MIGRATIONS: dict[int, tuple[str, ...]] = {
    2: (
        "ALTER TABLE user_state ADD COLUMN IF NOT EXISTS voice_profile_updated_at TEXT",
        "ALTER TABLE user_state ADD COLUMN IF NOT EXISTS last_proactive_at TEXT",
    ),
}


class PostgresStateStore:
    """Same surface as SqliteStateStore, backed by an asyncpg pool.

    The schema version lives in ``state_meta`` because Postgres has no
    ``user_version`` pragma.
    """

    SCHEMA_VERSION = 2
    backend_name = "postgres"

    def __init__(self, dsn: str, pool_size: int = 6) -> None:
        self.dsn = dsn.strip()
        if not self.dsn:
            raise ValueError("MEMORY_POSTGRES_DSN cannot be empty")
        self.pool_size = max(1, int(pool_size))
        self._pool: asyncpg.Pool | None = None
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def _pool_or_connect(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=self.pool_size,
                command_timeout=30.0,
            )
        return self._pool

    async def init(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            pool = await self._pool_or_connect()
            async with pool.acquire() as conn, conn.transaction():
                await conn.execute(_META_SQL)
                found = await self._stored_version(conn)
                if found > self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"Postgres schema version mismatch: found {found}, supported {self.SCHEMA_VERSION}. "
                        "Upgrade this build before starting."
                    )
                await conn.execute(_SCHEMA_SQL)
                for introduced_in, statements in sorted(_MIGRATIONS.items()):
                    if found < introduced_in:
                        for statement in statements:
                            await conn.execute(statement)
                if found != self.SCHEMA_VERSION:
                    await conn.execute(
                        "INSERT INTO state_meta (key, value) VALUES ('schema_version', $1) "
                        "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()",
                        str(self.SCHEMA_VERSION),
                    )
                    logger.info("Postgres state schema moved from v%s to v%s", found, self.SCHEMA_VERSION)
            self._initialized = True

    @staticmethod
    async def _stored_version(conn: asyncpg.Connection) -> int:
        raw = await conn.fetchval("SELECT value FROM state_meta WHERE key = 'schema_version'")
        try:
            return int(raw) if raw is not None else 0
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable schema_version %r", raw)
            return 0

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        self._initialized = False
        if pool is not None:
            await pool.close()

    async def load_user_state(self, user_id: str) -> UserState:
        pool = await self._pool_or_connect()
        row = await pool.fetchrow(
            f"SELECT {', '.join(STATE_FIELDS)} FROM user_state WHERE user_id = $1",
            user_id,
        )
        return UserState.from_row(user_id, dict(row) if row is not None else None)

    async def upsert_user_state(self, user_id: str, patch: dict[str, Any]) -> None:
        cleaned = normalize_patch(patch)
        if not cleaned:
            return
        columns = [name for name in STATE_FIELDS if name in cleaned]
        # $1 is user_id; JSON columns need an explicit cast.
        params = [
            f"${position}::jsonb" if name in JSON_FIELDS else f"${position}"
            for position, name in enumerate(columns, start=2)
        ]
        assignments = [f"{name} = EXCLUDED.{name}" for name in columns]
        sql = (
            f"INSERT INTO user_state (user_id, {', '.join(columns)}) VALUES ($1, {', '.join(params)}) "
            f"ON CONFLICT (user_id) DO UPDATE SET {', '.join(assignments)}, updated_at = NOW()"
        )
        pool = await self._pool_or_connect()
        await pool.execute(sql, user_id, *(encode_column(name, cleaned[name]) for name in columns))

    async def load_memory(self, user_id: str, limit: int = 20) -> list[str]:
        if limit <= 0:
            return []
        pool = await self._pool_or_connect()
        rows = await pool.fetch(
            "SELECT text FROM user_memory WHERE user_id = $1 ORDER BY memory_id DESC LIMIT $2",
            user_id,
            int(limit),
        )
        return [str(row["text"]) for row in rows]

    async def append_memory(self, user_id: str, text: str) -> None:
        entry = str(text or "").strip()
        if entry:
            pool = await self._pool_or_connect()
            await pool.execute("INSERT INTO user_memory (user_id, text) VALUES ($1, $2)", user_id, entry)
