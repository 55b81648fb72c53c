from __future__ import annotations

import logging
import os
from pathlib import Path

import aiosqlite

from .utils import open_state_db

logger = logging.getLogger("lxt_core.memory")

_TABLES = ("user_memory", "user_state")

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS user_state (
    user_id TEXT PRIMARY KEY,
    behavior_profile TEXT,
    voice_profile TEXT NOT NULL DEFAULT '',
    voice_profile_updated_at TEXT,
    last_topic TEXT,
    plan_tier TEXT NOT NULL DEFAULT 'core',
    preferred_email_provider TEXT,
    last_city TEXT,
    last_country TEXT,
    last_timezone TEXT,
    last_alert_hash TEXT,
    last_proactive_at TEXT,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS user_memory (
    memory_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    text TEXT NOT NULL,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_user_memory_recent
ON user_memory(user_id, memory_id DESC);
"""

# Additive column migrations keyed by the version that introduced them.
_ADDED_COLUMNS: dict[int, tuple[tuple[str, str], ...]] = {
    2: (
        ("user_state", "voice_profile_updated_at TEXT"),
        ("user_state", "last_proactive_at TEXT"),
    ),
}


def _reset_allowed() -> bool:
    raw = os.getenv("SQLITE_RESET_ON_SCHEMA_MISMATCH", "")
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


class StateSchemaMixin:
    SCHEMA_VERSION = 2

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    async def _scalar(db: aiosqlite.Connection, sql: str) -> object:
        async with db.execute(sql) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def init(self) -> None:
        async with open_state_db(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            version = int(await self._scalar(db, "PRAGMA user_version") or 0)
            populated = bool(
                await self._scalar(
                    db,
                    "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' LIMIT 1",
                )
            )

            if version > self.SCHEMA_VERSION:
                if not (populated and _reset_allowed()):
                    raise RuntimeError(
                        "SQLite schema version mismatch detected (database is newer than this build). "
                        f"Found user_version={version}, supported={self.SCHEMA_VERSION}. "
                        "Set SQLITE_RESET_ON_SCHEMA_MISMATCH=1 to allow destructive reset."
                    )
                logger.warning("Dropping state tables at %s (user_version=%s)", self.db_path, version)
                for table in _TABLES:
                    await db.execute(f"DROP TABLE IF EXISTS {table}")
                populated = False

            await db.executescript(_SCHEMA_SQL)
            if populated:
                await self._migrate(db, version)
            if version != self.SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
            await db.commit()

    async def close(self) -> None:
        return None

    async def _migrate(self, db: aiosqlite.Connection, from_version: int) -> None:
        for introduced_in, columns in sorted(_ADDED_COLUMNS.items()):
            if from_version >= introduced_in:
                continue
            for table, column_sql in columns:
                async with db.execute(f"PRAGMA table_info({table})") as cursor:
                    existing = {str(row[1]) for row in await cursor.fetchall()}
                if column_sql.split()[0] not in existing:
                    await db.execute(f"ALTER TABLE {table} ADD COLUMN {column_sql}")
                    logger.info("Migrated %s: added %s", table, column_sql)
