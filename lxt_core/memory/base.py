from __future__ import annotations

from typing import Any, Protocol

from .models import UserState


class StateStore(Protocol):
    """Per-user state plus an append-only utterance log."""

    backend_name: str

    async def init(self) -> None: ...

    async def close(self) -> None: ...

    async def load_user_state(self, user_id: str) -> UserState: ...

    async def upsert_user_state(self, user_id: str, patch: dict[str, Any]) -> None: ...

    async def load_memory(self, user_id: str, limit: int = 20) -> list[str]: ...

    async def append_memory(self, user_id: str, text: str) -> None: ...
