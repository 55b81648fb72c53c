from .base import StateStore
from .factory import build_state_store
from .in_memory import InMemoryStateStore
from .models import UserState
from .store import SqliteStateStore

__all__ = ["InMemoryStateStore", "SqliteStateStore", "StateStore", "UserState", "build_state_store"]
