from __future__ import annotations

from typing import Any

import aiosqlite

from ..models import STATE_FIELDS, UserState, encode_column, normalize_patch
from .utils import open_state_db


class UserStateMixin:
    async def load_user_state(self, user_id: str) -> UserState:
        columns = ", ".join(STATE_FIELDS)
        async with open_state_db(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT {columns} FROM user_state WHERE user_id = ?",
                (user_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return UserState.from_row(user_id, dict(row) if row is not None else None)

    async def upsert_user_state(self, user_id: str, patch: dict[str, Any]) -> None:
        cleaned = normalize_patch(patch)
        if not cleaned:
            return
        # Column names come from the STATE_FIELDS whitelist, never from the caller.
        keys = [key for key in STATE_FIELDS if key in cleaned]
        values = [encode_column(key, cleaned[key]) for key in keys]
        insert_cols = ", ".join(["user_id", *keys])
        placeholders = ", ".join("?" for _ in range(len(keys) + 1))
        updates = ", ".join(f"{key} = excluded.{key}" for key in keys)

        async with open_state_db(self.db_path) as db:
            await db.execute(
                f"""
                INSERT INTO user_state ({insert_cols})
                VALUES ({placeholders})
                ON CONFLICT(user_id) DO UPDATE SET
                    {updates},
                    updated_at = CURRENT_TIMESTAMP
                """,
                (user_id, *values),
            )
            await db.commit()
