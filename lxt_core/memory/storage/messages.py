from __future__ import annotations

from .utils import open_state_db


class MemoryLogMixin:
    async def append_memory(self, user_id: str, text: str) -> None:
        cleaned = str(text or "").strip()
        if not cleaned:
            return
        async with open_state_db(self.db_path) as db:
            await db.execute(
                "INSERT INTO user_memory (user_id, text) VALUES (?, ?)",
                (user_id, cleaned),
            )
            await db.commit()

    async def load_memory(self, user_id: str, limit: int = 20) -> list[str]:
        if limit <= 0:
            return []
        async with open_state_db(self.db_path) as db:
            async with db.execute(
                """
                SELECT text
                FROM user_memory
                WHERE user_id = ?
                ORDER BY memory_id DESC
                LIMIT ?
                """,
                (user_id, int(limit)),
            ) as cursor:
                rows = await cursor.fetchall()
        return [str(row[0]) for row in rows]
