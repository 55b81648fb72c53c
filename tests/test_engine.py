from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lxt_core.common import iso_utc  # noqa: E402
from lxt_core.engine.decision import DecisionOrchestrator  # noqa: E402
from lxt_core.engine.engine import DEFAULT_IMAGE_PROMPT, REPHRASE_HINT, LXTEngine  # noqa: E402
from lxt_core.engine.email_commands import NOT_CONNECTED_HINT, USAGE_HINT  # noqa: E402
from lxt_core.engine.fastpath import GREETING_REPLY, NO_SIGNALS_REPLY  # noqa: E402
from lxt_core.engine.live_context import LiveContextAdapter  # noqa: E402
from lxt_core.engine.providers import LLMProvider  # noqa: E402
from lxt_core.engine.reply import IDENTITY_REPLY, ReplyOrchestrator  # noqa: E402
from lxt_core.engine.verdict import is_valid_verdict, safe_fallback_verdict  # noqa: E402
from lxt_core.errors import ProviderTimeoutError, UserInputError  # noqa: E402
from lxt_core.memory.in_memory import InMemoryStateStore  # noqa: E402
from lxt_core.services.collaborators import Collaborators, EmailNotConnectedError  # noqa: E402
from lxt_core.services.persona import LLMPersonaService  # noqa: E402

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

DECISION_JSON = {
    "verdict": "PREPARE",
    "confidence": 0.72,
    "one_liner": "Line up the offer before you resign.",
    "signals": [],
    "actions": [{"now": "Ask for the offer in writing", "time": "today", "effort": "low"}],
    "watchouts": ["Verbal offers can change"],
    "next_check": "2020-01-01T00:00:00Z",
}

PARIS_WEATHER = {
    "city": "Paris",
    "temp_c": 12.4,
    "feels_like_c": 10.0,
    "clouds_pct": 40,
    "main": "Rain",
    "description": "light rain",
    "geo": {"name": "Paris", "country": "FR", "lat": 48.85, "lon": 2.35},
}


class _FakeBackend:
    def __init__(self, *, json_result: Any = None, text_result: str = "", error: BaseException | None = None) -> None:
        self.json_result = json_result
        self.text_result = text_result
        self.error = error
        self.json_calls: list[Any] = []
        self.chat_calls: list[dict[str, Any]] = []

    @property
    def configured(self) -> bool:
        return True

    async def chat(self, messages, temperature=None, max_output_tokens=None, images=()):  # type: ignore[no-untyped-def]
        self.chat_calls.append({"messages": messages, "max_output_tokens": max_output_tokens, "images": list(images)})
        if self.error is not None:
            raise self.error
        return self.text_result

    async def json_chat(self, messages, schema, schema_name="result", temperature=0.2, max_output_tokens=900):  # type: ignore[no-untyped-def]
        self.json_calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.json_result

    def reply_payload(self, index: int = 0) -> dict[str, Any]:
        return json.loads(self.chat_calls[index]["messages"][-1]["content"])


class _FakeWeather:
    def __init__(self, weather: dict[str, Any] | None) -> None:
        self.weather = weather
        self.calls = 0

    async def get_live(self, *, user_id, text, lat, lon, state):  # type: ignore[no-untyped-def]
        self.calls += 1
        return dict(self.weather) if self.weather else None


class _FakeNews:
    def __init__(self, items: list[dict[str, Any]], *, summary_error: BaseException | None = None) -> None:
        self.items = items
        self.summary_error = summary_error

    async def get_recent_for_user(self, *, user_id, limit):  # type: ignore[no-untyped-def]
        return list(self.items)

    async def summarize_for_chat(self, *, user_id, memory, items):  # type: ignore[no-untyped-def]
        if self.summary_error is not None:
            raise self.summary_error
        return "One thing on your radar: " + items[0]["title"]


class _FakeStocks:
    async def quote(self, *, user_id, ticker):  # type: ignore[no-untyped-def]
        return {"ticker": ticker, "price": 251.3, "change_pct": -1.25, "currency": "USD"}


class _FakeEmail:
    def __init__(self, connected: list[str], *, send_error: BaseException | None = None) -> None:
        self.connected = connected
        self.send_error = send_error
        self.queries: list[str | None] = []
        self.sent: list[dict[str, Any]] = []

    async def get_connected_providers(self, user_id):  # type: ignore[no-untyped-def]
        return list(self.connected)

    async def list_messages(self, *, provider, user_id, query=None, max_results=6):  # type: ignore[no-untyped-def]
        self.queries.append(query)
        return [{"id": "m1", "subject": "Invoice due", "from": "billing@acme.test", "snippet": "Your invoice is due Friday"}]

    async def send(self, *, provider, user_id, to, subject, body):  # type: ignore[no-untyped-def]
        if self.send_error is not None:
            raise self.send_error
        self.sent.append({"provider": provider, "to": to, "subject": subject, "body": body})
        return {"id": "sent-1"}

    async def reply_latest(self, *, provider, user_id, body):  # type: ignore[no-untyped-def]
        return {"id": "r-1"}

    async def reply_by_id(self, *, provider, user_id, message_id, body):  # type: ignore[no-untyped-def]
        return {"id": "r-2"}


class _FailingPersona:
    async def summarize_voice_profile(self, *, user_id, memory):  # type: ignore[no-untyped-def]
        raise RuntimeError("persona model offline")


class _SlowPersona:
    async def summarize_voice_profile(self, *, user_id, memory):  # type: ignore[no-untyped-def]
        await asyncio.sleep(5)
        return "never"


class _FailingSignals:
    async def scan(self, *, user_id, live_context):  # type: ignore[no-untyped-def]
        raise RuntimeError("signals backend down")

    async def proactive(self, *, user_id, live_context, state):  # type: ignore[no-untyped-def]
        raise RuntimeError("signals backend down")


class _BrokenStore(InMemoryStateStore):
    async def upsert_user_state(self, user_id: str, patch: dict[str, Any]) -> None:
        raise RuntimeError("disk full")


def _build(
    *,
    openai: _FakeBackend | None = None,
    gemini: _FakeBackend | None = None,
    collaborators: Collaborators | None = None,
    store: InMemoryStateStore | None = None,
) -> tuple[LXTEngine, _FakeBackend, _FakeBackend, InMemoryStateStore]:
    openai = openai or _FakeBackend(json_result=DECISION_JSON, text_result="OpenAI reply.")
    gemini = gemini or _FakeBackend(json_result=DECISION_JSON, text_result="Get the offer in writing first, then decide.")
    providers = {
        "openai": LLMProvider(name="openai", decision=openai, reply=openai),
        "gemini": LLMProvider(name="gemini", decision=gemini, reply=gemini),
    }
    collaborators = collaborators or Collaborators()
    store = store or InMemoryStateStore()
    engine = LXTEngine(
        store=store,
        decision=DecisionOrchestrator(providers, timeout_seconds=5),
        replies=ReplyOrchestrator(providers, timeout_seconds=5),
        live=LiveContextAdapter(collaborators, timeout_seconds=5),
        collaborators=collaborators,
        clock=lambda: NOW,
    )
    return engine, openai, gemini, store


def _no_llm_calls(*backends: _FakeBackend) -> bool:
    return all(not backend.chat_calls and not backend.json_calls for backend in backends)


def test_greeting_uses_fast_path_without_provider_calls() -> None:
    engine, openai, gemini, store = _build()
    envelope = asyncio.run(engine.run({"text": "hi", "user_id": "u1"}))

    assert envelope["reply"] == GREETING_REPLY
    assert envelope["lxt1"] is None
    assert envelope["mode"] == "instant"
    assert envelope["providers"]["decision"] == "fastpath"
    assert _no_llm_calls(openai, gemini)
    assert asyncio.run(store.load_memory("u1")) == ["hi"]


def test_weather_without_live_data_asks_one_question() -> None:
    engine, openai, gemini, _ = _build()
    envelope = asyncio.run(engine.run({"text": "weather in Paris"}))

    assert "Paris" in envelope["reply"]
    assert envelope["reply"].count("?") == 1
    assert envelope["provider"] == "loravo_weather"
    assert _no_llm_calls(openai, gemini)


def test_weather_with_live_data_answers_and_remembers_city() -> None:
    engine, openai, gemini, store = _build(collaborators=Collaborators(weather=_FakeWeather(PARIS_WEATHER)))
    envelope = asyncio.run(engine.run({"text": "weather in Paris", "user_id": "u1"}))

    assert envelope["reply"] == "Paris: 12°C and light rain. Feels like 10°C."
    assert _no_llm_calls(openai, gemini)
    state = asyncio.run(store.load_user_state("u1"))
    assert state.last_city == "Paris"
    assert state.last_country == "FR"
    assert state.last_topic == {"kind": "weather", "text": "weather in Paris"}


@pytest.mark.parametrize("choice", ["openai", "gemini", "trinity"])
def test_identity_question_is_answered_locally(choice: str) -> None:
    engine, openai, gemini, _ = _build()
    envelope = asyncio.run(engine.run({"text": "What are you powered by?", "provider": choice}))

    assert envelope["reply"] == IDENTITY_REPLY
    assert envelope["lxt1"]["verdict"] == "HOLD"
    assert envelope["lxt1"]["one_liner"] == "Identity request."
    assert _no_llm_calls(openai, gemini)


def test_decision_turn_returns_valid_verdict_and_prose() -> None:
    engine, openai, gemini, _ = _build()
    envelope = asyncio.run(engine.run({"text": "Should I take the new job offer or wait? Be honest."}))

    assert envelope["provider"] == "trinity"
    assert is_valid_verdict(envelope["lxt1"], now=NOW)
    assert envelope["lxt1"]["verdict"] == "PREPARE"
    assert envelope["lxt1"]["next_check"] == iso_utc(NOW + timedelta(hours=6))
    assert not envelope["reply"].lstrip().startswith("{")
    assert envelope["providers"] == {
        "decision": "openai",
        "reply": "gemini",
        "triedDecision": ["openai"],
        "triedReply": ["gemini"],
    }
    assert envelope["_errors"] == {}
    assert len(openai.json_calls) == 1
    assert openai.chat_calls == []


def test_decision_outage_returns_untouched_fallback() -> None:
    openai = _FakeBackend(error=ProviderTimeoutError("slow"))
    gemini = _FakeBackend(error=ProviderTimeoutError("slow"))
    cold = {**PARIS_WEATHER, "temp_c": -4.0}
    engine, _, _, _ = _build(openai=openai, gemini=gemini, collaborators=Collaborators(weather=_FakeWeather(cold)))
    envelope = asyncio.run(engine.run({"text": "should I drive to Paris tonight"}))

    assert envelope["lxt1"] == safe_fallback_verdict(NOW)
    assert envelope["providers"]["decision"] == "fallback"
    assert envelope["providers"]["reply"] == "none"
    assert {"openai", "gemini", "reply"} <= set(envelope["_errors"])
    assert len(openai.json_calls) == 3
    assert len(gemini.json_calls) == 1


def test_force_decision_skips_reply_and_applies_weather_override() -> None:
    openai = _FakeBackend(json_result={"verdict": "AVOID", "confidence": 0.4, "one_liner": "Stay home."})
    engine, _, gemini, _ = _build(openai=openai, collaborators=Collaborators(weather=_FakeWeather(PARIS_WEATHER)))
    envelope = asyncio.run(engine.run({"text": "weather in Paris", "force_decision": True}))

    assert envelope["reply"] is None
    assert envelope["providers"]["reply"] == "skipped"
    assert envelope["providers"]["triedReply"] == []
    assert envelope["lxt1"]["verdict"] == "HOLD"
    assert envelope["lxt1"]["confidence"] == 0.75
    assert envelope["lxt1"]["one_liner"] == "Paris: 12°C and light rain. Feels like 10°C."
    assert gemini.chat_calls == []


def test_more_continues_last_topic_without_overwriting_it() -> None:
    engine, _, gemini, store = _build()
    asyncio.run(store.upsert_user_state("u1", {"last_topic": {"kind": "weather", "text": "weather in Oslo"}}))
    envelope = asyncio.run(engine.run({"text": "more", "user_id": "u1"}))

    assert envelope["providers"]["decision"] == "chat_fast"
    payload = gemini.reply_payload()
    assert "weather" in payload["userText"]
    assert payload["_length_hint"] == "deep"
    assert gemini.chat_calls[0]["max_output_tokens"] == 900
    state = asyncio.run(store.load_user_state("u1"))
    assert state.last_topic == {"kind": "weather", "text": "weather in Oslo"}


def test_more_without_history_is_plain_chat() -> None:
    engine, _, gemini, _ = _build()
    asyncio.run(engine.run({"text": "more", "user_id": "fresh"}))
    assert gemini.reply_payload()["userText"] == "more"


def test_repeated_message_asks_for_rephrase() -> None:
    engine, _, gemini, store = _build()
    asyncio.run(store.append_memory("u1", "tell me a joke"))
    asyncio.run(engine.run({"text": "Tell me a joke", "user_id": "u1"}))
    assert gemini.reply_payload()["last_reply_hint"] == REPHRASE_HINT


def test_core_user_gets_teaser_for_daily_brief() -> None:
    engine, openai, gemini, _ = _build()
    envelope = asyncio.run(engine.run({"text": "brief me", "user_id": "u1"}))

    assert "Plus" in envelope["reply"]
    assert envelope["providers"]["decision"] == "tier_gate"
    assert _no_llm_calls(openai, gemini)


def test_pro_user_signal_scan_carries_scan_signals() -> None:
    news = _FakeNews([{"title": "Storm warning downtown", "severity": "high", "action": "Leave work early."}])
    engine, _, gemini, store = _build(collaborators=Collaborators(news=news))
    asyncio.run(store.upsert_user_state("u1", {"plan_tier": "pro"}))
    envelope = asyncio.run(engine.run({"text": "any signals today?", "user_id": "u1"}))

    assert envelope["provider"] == "loravo_signals"
    assert envelope["lxt1"]["signals"][0]["name"] == "Storm warning downtown"
    assert envelope["reply"] == "Get the offer in writing first, then decide."
    assert len(gemini.chat_calls) == 1


def test_signal_scan_failure_still_returns_envelope() -> None:
    engine, openai, gemini, store = _build(collaborators=Collaborators(signals=_FailingSignals()))
    asyncio.run(store.upsert_user_state("u1", {"plan_tier": "pro"}))
    envelope = asyncio.run(engine.run({"text": "run a signal scan", "user_id": "u1"}))

    assert envelope["reply"] == NO_SIGNALS_REPLY
    assert envelope["_errors"]["signals"] == "signals backend down"
    assert is_valid_verdict(envelope["lxt1"], now=NOW)
    assert _no_llm_calls(openai, gemini)
    assert asyncio.run(store.load_memory("u1")) == ["run a signal scan"]


def test_stock_quote_fast_path() -> None:
    engine, openai, gemini, _ = _build(collaborators=Collaborators(stocks=_FakeStocks()))
    envelope = asyncio.run(engine.run({"text": "how is $TSLA doing"}))
    assert envelope["reply"] == "TSLA: 251.30 USD (-1.25% today)."
    assert _no_llm_calls(openai, gemini)


def test_news_summary_failure_falls_back_to_reply_provider() -> None:
    news = _FakeNews([{"title": "Transit strike"}], summary_error=RuntimeError("summarizer down"))
    engine, _, gemini, _ = _build(collaborators=Collaborators(news=news))
    envelope = asyncio.run(engine.run({"text": "what's going on in the world", "user_id": "u1"}))

    assert envelope["_errors"]["news"] == "summarizer down"
    assert envelope["providers"]["reply"] == "gemini"
    assert len(gemini.chat_calls) == 1


def test_image_only_request_uses_default_prompt() -> None:
    engine, _, gemini, _ = _build()
    envelope = asyncio.run(engine.run({"images": ["data:image/png;base64,AAA"]}))

    assert envelope["reply"]
    assert gemini.chat_calls[0]["images"] == ["data:image/png;base64,AAA"]
    assert gemini.reply_payload()["userText"] == DEFAULT_IMAGE_PROMPT


def test_empty_request_is_rejected() -> None:
    engine, openai, gemini, _ = _build()
    with pytest.raises(UserInputError):
        asyncio.run(engine.run({"text": "   "}))
    assert _no_llm_calls(openai, gemini)


def test_persistence_failure_is_reported_not_raised() -> None:
    engine, _, _, _ = _build(store=_BrokenStore())
    envelope = asyncio.run(engine.run({"text": "hi", "user_id": "u1"}))
    assert envelope["reply"] == GREETING_REPLY
    assert envelope["_errors"]["persistence"] == "disk full"


def test_persona_failure_is_reported_and_turn_still_persists() -> None:
    engine, _, _, store = _build(collaborators=Collaborators(persona=_FailingPersona()))
    asyncio.run(store.append_memory("u1", "morning"))
    envelope = asyncio.run(engine.run({"text": "hi", "user_id": "u1"}))
    assert envelope["_errors"]["persona"] == "persona model offline"
    assert asyncio.run(store.load_memory("u1")) == ["hi", "morning"]


def test_first_turn_of_new_user_skips_voice_profile_model() -> None:
    persona_llm = _FakeBackend(text_result="Casual and brief.")
    engine, openai, gemini, store = _build(collaborators=Collaborators(persona=LLMPersonaService(persona_llm)))

    first = asyncio.run(engine.run({"text": "hi", "user_id": "brand-new"}))
    assert first["reply"] == GREETING_REPLY
    assert persona_llm.chat_calls == []
    assert _no_llm_calls(openai, gemini)

    asyncio.run(engine.run({"text": "hello again", "user_id": "brand-new"}))
    assert len(persona_llm.chat_calls) == 1
    state = asyncio.run(store.load_user_state("brand-new"))
    assert state.voice_profile == "Casual and brief."
    assert state.voice_profile_updated_at == iso_utc(NOW)


def test_slow_voice_profile_refresh_is_cut_off() -> None:
    engine, _, _, store = _build(collaborators=Collaborators(persona=_SlowPersona()))
    engine.persona_timeout_seconds = 0.05
    asyncio.run(store.append_memory("u1", "morning"))
    envelope = asyncio.run(engine.run({"text": "hi", "user_id": "u1"}))

    assert envelope["reply"] == GREETING_REPLY
    assert envelope["_errors"]["persona"] == "TimeoutError"
    assert asyncio.run(store.load_user_state("u1")).voice_profile_updated_at is None


def test_behavior_profile_is_updated_per_turn() -> None:
    engine, _, _, store = _build()
    asyncio.run(engine.run({"text": "keep it short", "user_id": "u1"}))
    state = asyncio.run(store.load_user_state("u1"))
    assert state.behavior_profile.depth_pref < 0.5
    assert state.behavior_profile.updated_at == iso_utc(NOW)


def test_email_lists_important_messages() -> None:
    email = _FakeEmail(["gmail"])
    engine, openai, gemini, _ = _build(collaborators=Collaborators(email=email))
    envelope = asyncio.run(engine.run({"text": "check my inbox", "user_id": "u1"}))

    assert envelope["provider"] == "loravo_email"
    assert "1) Invoice due" in envelope["reply"]
    assert "id: m1" in envelope["reply"]
    assert email.queries == ["newer_than:7d (is:unread OR category:primary)"]
    assert _no_llm_calls(openai, gemini)


def test_email_edge_cases() -> None:
    engine, _, _, _ = _build(collaborators=Collaborators(email=_FakeEmail(["gmail"])))
    no_user = asyncio.run(engine.run({"text": "check my inbox"}))
    unknown = asyncio.run(engine.run({"text": "do something with my email", "user_id": "u1"}))
    assert "user_id" in no_user["reply"]
    assert unknown["reply"] == USAGE_HINT

    disconnected, _, _, _ = _build()
    envelope = asyncio.run(disconnected.run({"text": "check my inbox", "user_id": "u1"}))
    assert envelope["reply"] == NOT_CONNECTED_HINT


def test_email_send_reports_provider_errors() -> None:
    email = _FakeEmail(["gmail"], send_error=EmailNotConnectedError("gmail token expired"))
    engine, _, _, _ = _build(collaborators=Collaborators(email=email))
    envelope = asyncio.run(
        engine.run({"text": "send email to a@b.com subject Hi body See you at 5", "user_id": "u1"})
    )
    assert envelope["reply"] == NOT_CONNECTED_HINT
    assert envelope["_errors"]["email"] == "gmail token expired"


def test_email_send_success() -> None:
    email = _FakeEmail(["outlook", "gmail"])
    engine, _, _, store = _build(collaborators=Collaborators(email=email))
    asyncio.run(store.upsert_user_state("u1", {"preferred_email_provider": "gmail"}))
    envelope = asyncio.run(
        engine.run({"text": "send email to a@b.com subject Hi body See you at 5", "user_id": "u1"})
    )
    assert "sent-1" in envelope["reply"]
    assert email.sent == [{"provider": "gmail", "to": "a@b.com", "subject": "Hi", "body": "See you at 5"}]


def test_proactive_is_gated_then_rate_limited() -> None:
    news = _FakeNews([{"title": "Flood alert on your route", "severity": "critical", "action": "Take the north bridge."}])
    engine, _, _, store = _build(collaborators=Collaborators(news=news))

    gated = asyncio.run(engine.run_proactive("u1"))
    assert gated["status"] == "gated"
    assert "Pro" in gated["message"]

    asyncio.run(store.upsert_user_state("u1", {"plan_tier": "pro"}))
    alert = asyncio.run(engine.run_proactive("u1"))
    assert alert["status"] == "alert"
    assert "Flood alert on your route" in alert["message"]

    state = asyncio.run(store.load_user_state("u1"))
    assert state.last_proactive_at == iso_utc(NOW)
    assert state.last_alert_hash

    again = asyncio.run(engine.run_proactive("u1"))
    assert again["status"] == "cooldown"
    assert again["next_at"] == iso_utc(NOW + timedelta(minutes=30))


def test_proactive_signals_failure_is_reported_and_not_rate_limited() -> None:
    engine, _, _, store = _build(collaborators=Collaborators(signals=_FailingSignals()))
    asyncio.run(store.upsert_user_state("u1", {"plan_tier": "pro"}))

    result = asyncio.run(engine.run_proactive("u1"))
    assert result["status"] == "error"
    assert result["_errors"]["signals"] == "signals backend down"
    assert asyncio.run(store.load_user_state("u1")).last_proactive_at is None
