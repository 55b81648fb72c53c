from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Sequence

from ..common import utc_now
from ..prompts.decision import build_decision_messages
from .attempts import AttemptStep, attempt_in_order
from .providers import DECISION_ORDER, LLMProvider, provider_order
from .verdict import lxt1_schema, safe_fallback_verdict, sanitize_verdict

logger = logging.getLogger("lxt_core.decision")

FALLBACK_PROVIDER = "fallback"


@dataclass(slots=True)
class DecisionResult:
    verdict: Dict[str, Any]
    provider: str
    tried: list[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def is_fallback(self) -> bool:
        return self.provider == FALLBACK_PROVIDER


class DecisionOrchestrator:
    """Primary provider with bounded retries, then the secondary once, then a fixed safe verdict."""

    def __init__(
        self,
        providers: Mapping[str, LLMProvider],
        *,
        timeout_seconds: float,
        primary_attempts: int = 3,
        temperature: float = 0.2,
    ) -> None:
        self.providers = dict(providers)
        self.timeout_seconds = timeout_seconds
        self.primary_attempts = max(1, int(primary_attempts))
        self.temperature = temperature

    def _step(self, name: str, attempts: int, messages: list[Dict[str, str]], max_tokens: int) -> AttemptStep[Dict[str, Any]]:
        provider = self.providers.get(name)
        backend = provider.decision_backend() if provider is not None else None
        if backend is None:
            return AttemptStep(name=name, call=None, attempts=attempts)

        async def call() -> Dict[str, Any]:
            return await backend.json_chat(
                messages,
                schema=lxt1_schema(),
                schema_name="lxt1",
                temperature=self.temperature,
                max_output_tokens=max_tokens,
            )

        return AttemptStep(name=name, call=call, attempts=attempts)

    async def decide(
        self,
        *,
        choice: str,
        text: str,
        memory: Sequence[str],
        live_context: Dict[str, Any] | None,
        max_tokens: int,
        now: datetime | None = None,
    ) -> DecisionResult:
        moment = now or utc_now()
        messages = build_decision_messages(text, memory, live_context)
        order = provider_order(choice, DECISION_ORDER)
        steps = [
            self._step(name, self.primary_attempts if index == 0 else 1, messages, max_tokens)
            for index, name in enumerate(order)
        ]

        outcome = await attempt_in_order(steps, timeout=self.timeout_seconds, label="decision")
        if outcome.ok:
            return DecisionResult(
                verdict=sanitize_verdict(outcome.value, now=moment),
                provider=str(outcome.provider),
                tried=outcome.tried,
                errors=outcome.errors,
            )

        logger.warning("Decision providers exhausted (%s); returning safe fallback", ", ".join(outcome.tried))
        return DecisionResult(
            verdict=safe_fallback_verdict(moment),
            provider=FALLBACK_PROVIDER,
            tried=outcome.tried,
            errors=outcome.errors,
        )
