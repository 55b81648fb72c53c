from .messages import MemoryLogMixin
from .schema import StateSchemaMixin
from .user_state import UserStateMixin

__all__ = [
    "StateSchemaMixin",
    "UserStateMixin",
    "MemoryLogMixin",
]
