"""Named LLM backends and the two fallback orders that walk them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Sequence

DECISION_ORDER = ("openai", "gemini")
# Reversed on purpose so decision and reply traffic lead with different providers.
REPLY_ORDER = ("gemini", "openai")
PROVIDER_NAMES = frozenset(DECISION_ORDER)


class ChatBackend(Protocol):
    @property
    def configured(self) -> bool: ...

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        images: Sequence[str] = (),
    ) -> str: ...

    async def json_chat(
        self,
        messages: List[Dict[str, str]],
        schema: Dict[str, Any],
        schema_name: str = "result",
        temperature: float = 0.2,
        max_output_tokens: int = 900,
    ) -> Dict[str, Any]: ...


@dataclass(slots=True)
class LLMProvider:
    name: str
    decision: ChatBackend | None = None
    reply: ChatBackend | None = None

    def decision_backend(self) -> ChatBackend | None:
        return self.decision if self.decision is not None and self.decision.configured else None

    def reply_backend(self) -> ChatBackend | None:
        return self.reply if self.reply is not None and self.reply.configured else None


def normalize_provider_choice(value: object, default: str = "trinity") -> str:
    raw = str(value or "").strip().lower()
    if raw in PROVIDER_NAMES or raw == "trinity":
        return raw
    return default


def provider_order(choice: str, trinity_order: Sequence[str]) -> list[str]:
    """An explicit provider runs alone; ``trinity`` walks the full order."""
    if choice in PROVIDER_NAMES:
        return [choice]
    return list(trinity_order)
