from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any

from .models import UserState, normalize_patch


class InMemoryStateStore:
    """Process-local store. One instance per engine; tests build a fresh one each."""

    backend_name = "memory"

    def __init__(self) -> None:
        self._states: dict[str, dict[str, Any]] = {}
        self._memory: dict[str, list[str]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def load_user_state(self, user_id: str) -> UserState:
        return UserState.from_row(user_id, self._states.get(user_id))

    async def upsert_user_state(self, user_id: str, patch: dict[str, Any]) -> None:
        cleaned = normalize_patch(patch)
        if not cleaned:
            return
        async with self._lock:
            row = self._states.setdefault(user_id, {})
            row.update(cleaned)

    async def load_memory(self, user_id: str, limit: int = 20) -> list[str]:
        if limit <= 0:
            return []
        entries = self._memory.get(user_id, [])
        return list(reversed(entries[-int(limit) :]))

    async def append_memory(self, user_id: str, text: str) -> None:
        cleaned = str(text or "").strip()
        if cleaned:
            self._memory[user_id].append(cleaned)
