from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Sequence

from ..common import extract_first_json_object, strip_json_fences
from ..errors import ProviderResponseError
from ..prompts.reply import build_reply_messages, reply_text
from .attempts import AttemptStep, attempt_in_order
from .intent import is_identity_question
from .mode import depth_hint, pick_reply_tokens
from .providers import REPLY_ORDER, LLMProvider, provider_order

logger = logging.getLogger("lxt_core.reply")

IDENTITY_REPLY = "Powered by LXT-1."
FASTPATH_PROVIDER = "fastpath"
_PROSE_KEYS = ("reply", "text", "message", "answer", "one_liner")


def as_prose(raw: str) -> str:
    """Return plain reply text, unwrapping a model that answered in JSON anyway."""
    text = strip_json_fences(str(raw or "")).strip()
    if not text.startswith(("{", "[")):
        return text
    parsed = extract_first_json_object(text)
    if parsed is not None:
        for key in _PROSE_KEYS:
            value = parsed.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    raise ProviderResponseError("reply came back as structured data, not prose")


@dataclass(slots=True)
class ReplyResult:
    reply: str
    provider: str
    tried: list[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.provider == "none"

    def error_entries(self) -> Dict[str, str]:
        if not self.errors:
            return {}
        return {"reply": "; ".join(f"{name}: {message}" for name, message in self.errors.items())}


class ReplyOrchestrator:
    """Turns a verdict (or a fast-path instruction) into user-facing prose.

    Walks providers in the reverse of the decision order. Every provider gets a
    single attempt; exhaustion degrades to a short apology instead of raising.
    """

    def __init__(
        self,
        providers: Mapping[str, LLMProvider],
        *,
        timeout_seconds: float,
        temperature: float = 0.6,
    ) -> None:
        self.providers = dict(providers)
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature

    def _step(
        self,
        name: str,
        messages: list[Dict[str, str]],
        max_tokens: int,
        images: Sequence[str],
    ) -> AttemptStep[str]:
        provider = self.providers.get(name)
        backend = provider.reply_backend() if provider is not None else None
        if backend is None:
            return AttemptStep(name=name, call=None)

        async def call() -> str:
            raw = await backend.chat(
                messages,
                temperature=self.temperature,
                max_output_tokens=max_tokens,
                images=images,
            )
            text = as_prose(raw)
            if not text:
                raise ProviderResponseError(f"{name} returned an empty reply", provider=name)
            return text

        return AttemptStep(name=name, call=call)

    async def reply(
        self,
        *,
        choice: str,
        text: str,
        verdict: Dict[str, Any] | None,
        live_context: Dict[str, Any] | None,
        voice_line: str = "",
        voice_profile: str = "",
        rephrase_hint: str = "",
        style: str = "human",
        instruction: str = "",
        images: Sequence[str] = (),
        length_text: str | None = None,
    ) -> ReplyResult:
        if is_identity_question(text):
            return ReplyResult(reply=IDENTITY_REPLY, provider=FASTPATH_PROVIDER, tried=[FASTPATH_PROVIDER])

        # Length follows what the user typed, even when the prompt was expanded.
        sizing_text = text if length_text is None else length_text
        messages = build_reply_messages(
            text=text,
            verdict=verdict,
            live_context=live_context,
            voice_line=voice_line,
            voice_profile=voice_profile,
            rephrase_hint=rephrase_hint,
            depth=depth_hint(sizing_text),
            style=style,
            instruction=instruction,
        )
        max_tokens = pick_reply_tokens(sizing_text)
        steps = [self._step(name, messages, max_tokens, images) for name in provider_order(choice, REPLY_ORDER)]

        outcome = await attempt_in_order(steps, timeout=self.timeout_seconds, label="reply")
        if outcome.ok:
            return ReplyResult(
                reply=str(outcome.value),
                provider=str(outcome.provider),
                tried=outcome.tried,
                errors=outcome.errors,
            )

        logger.warning("Reply providers exhausted (%s); sending apology", ", ".join(outcome.tried))
        return ReplyResult(
            reply=reply_text("apology_reply"),
            provider="none",
            tried=outcome.tried,
            errors=outcome.errors,
        )
