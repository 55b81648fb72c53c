from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from .config import Settings
from .engine.decision import DecisionOrchestrator
from .engine.engine import LXTEngine
from .engine.live_context import LiveContextAdapter
from .engine.providers import LLMProvider
from .engine.reply import ReplyOrchestrator
from .errors import LXTError, UserInputError
from .memory.base import StateStore
from .memory.factory import build_state_store
from .services.collaborators import Collaborators
from .services.gemini_client import GeminiClient
from .services.openai_client import OpenAIClient
from .services.persona import LLMPersonaService, first_configured
from .services.weather import OpenWeatherService

logger = logging.getLogger("lxt_core")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


@dataclass(slots=True)
class Runtime:
    engine: LXTEngine
    resources: list[Any] = field(default_factory=list)

    async def start(self) -> None:
        await self.engine.start()
        for resource in self.resources:
            await resource.start()

    async def close(self) -> None:
        for resource in self.resources:
            with contextlib.suppress(Exception):
                await resource.close()
        await self.engine.close()


def build_providers(settings: Settings) -> dict[str, LLMProvider]:
    timeout = settings.provider_timeout_seconds
    return {
        "openai": LLMProvider(
            name="openai",
            decision=OpenAIClient(
                api_key=settings.openai_api_key,
                model=settings.openai_model_decision,
                timeout_seconds=timeout,
                base_url=settings.openai_base_url,
            ),
            reply=OpenAIClient(
                api_key=settings.openai_api_key,
                model=settings.openai_model_reply,
                timeout_seconds=timeout,
                base_url=settings.openai_base_url,
            ),
        ),
        "gemini": LLMProvider(
            name="gemini",
            decision=GeminiClient(
                api_key=settings.gemini_api_key,
                model=settings.gemini_model,
                timeout_seconds=timeout,
                base_url=settings.gemini_base_url,
            ),
            reply=GeminiClient(
                api_key=settings.gemini_api_key,
                model=settings.gemini_model_reply,
                timeout_seconds=timeout,
                base_url=settings.gemini_base_url,
            ),
        ),
    }


def build_runtime(
    settings: Settings,
    *,
    collaborators: Collaborators | None = None,
    store: StateStore | None = None,
) -> Runtime:
    providers = build_providers(settings)
    resources: list[Any] = []
    for provider in providers.values():
        resources.extend([provider.decision, provider.reply])

    if collaborators is None:
        collaborators = Collaborators()
        if settings.openweather_api_key:
            weather = OpenWeatherService(
                api_key=settings.openweather_api_key,
                timeout_seconds=settings.live_context_timeout_seconds,
                base_url=settings.openweather_base_url,
            )
            collaborators.weather = weather
            resources.append(weather)
        persona_llm = first_configured(providers["gemini"].reply, providers["openai"].reply)
        if persona_llm is not None:
            collaborators.persona = LLMPersonaService(persona_llm)

    timeout = settings.provider_timeout_seconds
    engine = LXTEngine(
        store=store or build_state_store(settings),
        decision=DecisionOrchestrator(
            providers,
            timeout_seconds=timeout,
            primary_attempts=settings.decision_primary_attempts,
        ),
        replies=ReplyOrchestrator(providers, timeout_seconds=timeout),
        live=LiveContextAdapter(
            collaborators,
            timeout_seconds=settings.live_context_timeout_seconds,
            news_limit=settings.news_context_limit,
        ),
        collaborators=collaborators,
        default_provider=settings.default_provider,
        memory_limit=settings.memory_recent_limit,
        ema_alpha=settings.behavior_ema_alpha,
        voice_refresh_days=settings.voice_profile_refresh_days,
        persona_timeout_seconds=settings.provider_timeout_seconds,
        proactive_cooldown_minutes=settings.proactive_cooldown_minutes,
    )
    return Runtime(engine=engine, resources=resources)


async def _repl(runtime: Runtime, user_id: str) -> None:
    print("LXT ready. Type a message, or 'exit' to quit.", flush=True)
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            return
        text = line.strip()
        if text.lower() in {"exit", "quit"}:
            return
        try:
            envelope = await runtime.engine.run({"text": text, "user_id": user_id})
        except UserInputError as exc:
            print(f"! {exc}", flush=True)
            continue
        print(json.dumps(envelope, ensure_ascii=False, indent=2), flush=True)


async def _run(settings: Settings) -> None:
    runtime = build_runtime(settings)
    await runtime.start()
    try:
        user_id = os.getenv("LXT_CLI_USER_ID", "").strip() or "local"
        await _repl(runtime, user_id)
    finally:
        await runtime.close()


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        settings.validate()
    except LXTError as exc:
        logger.error("Invalid configuration: %s", exc)
        raise SystemExit(2) from exc
    try:
        asyncio.run(_run(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")


if __name__ == "__main__":
    main()
