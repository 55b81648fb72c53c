from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol, Sequence

from ..common import collapse_spaces, truncate
from ..prompts.persona import VOICE_PROFILE_MAX_CHARS, build_voice_profile_messages

logger = logging.getLogger("lxt_core.persona")


class _ChatBackend(Protocol):
    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str: ...


class LLMPersonaService:
    """Summarizes a user's recent messages into a short tone description."""

    def __init__(self, llm: _ChatBackend | None, *, temperature: float = 0.3, max_output_tokens: int = 160) -> None:
        self.llm = llm
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    async def summarize_voice_profile(self, *, user_id: str, memory: Sequence[str]) -> str:
        if self.llm is None or not memory:
            return ""
        raw = await self.llm.chat(
            build_voice_profile_messages(list(memory)),
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )
        summary = truncate(collapse_spaces(raw), VOICE_PROFILE_MAX_CHARS)
        logger.info("Voice profile summarized user=%s chars=%s", user_id, len(summary))
        return summary


def first_configured(*clients: Any) -> Any | None:
    for client in clients:
        if client is not None and getattr(client, "configured", False):
            return client
    return None
