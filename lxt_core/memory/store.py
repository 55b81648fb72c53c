from __future__ import annotations

from .storage.messages import MemoryLogMixin
from .storage.schema import StateSchemaMixin
from .storage.user_state import UserStateMixin


class SqliteStateStore(
    StateSchemaMixin,
    UserStateMixin,
    MemoryLogMixin,
):
    """SQLite user state + utterance log, schema versioned through PRAGMA user_version."""

    backend_name = "sqlite"
