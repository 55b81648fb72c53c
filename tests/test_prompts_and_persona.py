from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lxt_core.memory.factory import build_state_store  # noqa: E402
from lxt_core.memory.in_memory import InMemoryStateStore  # noqa: E402
from lxt_core.memory.store import SqliteStateStore  # noqa: E402
from lxt_core.config import Settings  # noqa: E402
from lxt_core.prompts.decision import build_decision_messages  # noqa: E402
from lxt_core.prompts.reply import build_reply_messages, reply_text  # noqa: E402
from lxt_core.services.persona import LLMPersonaService, first_configured  # noqa: E402


def test_prompt_override_file_is_merged(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "reply.json").write_text(
        json.dumps({"apology_reply": ["Give me a second,", "then try again."]}),
        encoding="utf-8",
    )
    monkeypatch.setenv("LXT_PROMPTS_DIR", str(tmp_path))

    assert reply_text("apology_reply") == "Give me a second,\nthen try again."
    assert "Powered by LXT-1." in reply_text("reply_system_prompt")


def test_broken_override_falls_back_to_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "reply.json").write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("LXT_PROMPTS_DIR", str(tmp_path))
    assert reply_text("apology_reply").startswith("Sorry")


def test_decision_messages_carry_memory_and_live_context() -> None:
    messages = build_decision_messages("should I go", ["older", " ", "oldest"], {"weather": None})
    assert messages[0]["role"] == "system"
    assert "- older\n- oldest" in messages[1]["content"]
    assert messages[2]["content"].endswith('{"weather":null}')
    assert messages[-1] == {"role": "user", "content": "should I go"}


def test_reply_messages_add_voice_and_instruction() -> None:
    messages = build_reply_messages(
        text="what now",
        verdict={"verdict": "HOLD", "confidence": 0.8, "one_liner": "Wait.", "signals": [{"name": "s"}] * 6},
        live_context={},
        voice_line="Keep replies short.",
        instruction="Summarize these emails.",
        depth="short",
    )
    system = messages[0]["content"]
    assert "Keep replies short." in system
    assert system.endswith("Summarize these emails.")
    payload = json.loads(messages[1]["content"])
    assert payload["verdict"] == "HOLD"
    assert len(payload["top_signals"]) == 4
    assert payload["_length_hint"] == "short"


class _FakeLLM:
    configured = True

    def __init__(self, text: str) -> None:
        self.text = text
        self.messages: list[dict[str, str]] = []

    async def chat(self, messages, temperature=None, max_output_tokens=None):  # type: ignore[no-untyped-def]
        self.messages = messages
        return self.text


class _Unconfigured:
    configured = False


def test_persona_service_summarizes_and_truncates() -> None:
    llm = _FakeLLM("word " * 200)
    summary = asyncio.run(LLMPersonaService(llm).summarize_voice_profile(user_id="u", memory=["hey there", "k thx"]))
    assert len(summary) <= 280
    assert "- hey there\n- k thx" in llm.messages[1]["content"]
    assert asyncio.run(LLMPersonaService(None).summarize_voice_profile(user_id="u", memory=["x"])) == ""


def test_first_configured_skips_missing_credentials() -> None:
    llm = _FakeLLM("x")
    assert first_configured(_Unconfigured(), None, llm) is llm
    assert first_configured(_Unconfigured()) is None


def test_state_store_factory(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MEMORY_BACKEND", "memory")
    assert isinstance(build_state_store(Settings.from_env()), InMemoryStateStore)

    monkeypatch.setenv("MEMORY_BACKEND", "sqlite")
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "lxt.db"))
    assert isinstance(build_state_store(Settings.from_env()), SqliteStateStore)
