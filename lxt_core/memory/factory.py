from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..errors import ConfigurationError
from .base import StateStore
from .in_memory import InMemoryStateStore
from .store import SqliteStateStore

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger("lxt_core.memory")


def build_state_store(settings: "Settings") -> StateStore:
    backend = settings.memory_backend
    if backend == "memory":
        logger.warning("MEMORY_BACKEND=memory: user state is lost on restart")
        return InMemoryStateStore()
    if backend == "sqlite":
        return SqliteStateStore(settings.sqlite_path)
    if backend == "postgres":
        if not settings.memory_postgres_dsn:
            raise ConfigurationError("MEMORY_POSTGRES_DSN is required when MEMORY_BACKEND=postgres")
        from .postgres_store import PostgresStateStore

        return PostgresStateStore(settings.memory_postgres_dsn)
    raise ConfigurationError("MEMORY_BACKEND must be 'sqlite', 'postgres' or 'memory'")
