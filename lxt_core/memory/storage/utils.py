from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

BUSY_TIMEOUT_DEFAULT_MS = 5000
BUSY_TIMEOUT_MAX_MS = 60000


def busy_timeout_ms() -> int:
    """SQLITE_BUSY_TIMEOUT_MS clamped to [0, 60000]; 0 disables the pragma."""
    raw = os.getenv("SQLITE_BUSY_TIMEOUT_MS", "").strip()
    try:
        value = int(raw) if raw else BUSY_TIMEOUT_DEFAULT_MS
    except ValueError:
        value = BUSY_TIMEOUT_DEFAULT_MS
    return max(0, min(value, BUSY_TIMEOUT_MAX_MS))


@asynccontextmanager
async def open_state_db(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(db_path) as db:
        wait_ms = busy_timeout_ms()
        if wait_ms:
            await db.execute(f"PRAGMA busy_timeout={wait_ms}")
        yield db
