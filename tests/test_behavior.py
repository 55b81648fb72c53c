from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lxt_core.common import iso_utc  # noqa: E402
from lxt_core.persona.behavior import (  # noqa: E402
    DIMENSIONS,
    BehaviorProfile,
    extract_signals,
    merge_profile,
    voice_line,
)
from lxt_core.persona.voice import refresh_voice_profile, voice_profile_due  # noqa: E402

NOW = datetime(2026, 5, 4, 9, 30, tzinfo=timezone.utc)


def _run_updates(text: str, count: int) -> BehaviorProfile:
    profile = BehaviorProfile()
    for _ in range(count):
        profile = merge_profile(profile, extract_signals(text), alpha=0.15, now=NOW)
    return profile


def test_keep_it_short_lowers_depth_monotonically() -> None:
    after_ten = _run_updates("keep it short", 10)
    after_fifty = _run_updates("keep it short", 50)
    assert after_fifty.depth_pref < after_ten.depth_pref < 0.5
    for profile in (after_ten, after_fifty):
        for name in DIMENSIONS:
            assert 0.0 <= getattr(profile, name) <= 1.0


def test_signals_only_touch_mentioned_dimensions() -> None:
    signals = extract_signals("Be honest, and stop sounding so robotic")
    assert signals["directness"] == 1.0
    assert signals["anti_robotic"] == 1.0
    assert signals["friction"] == 1.0
    assert signals["depth_pref"] is None
    assert signals["bullet_pref"] is None


def test_prose_request_wins_over_bullet_word() -> None:
    assert extract_signals("no bullets please")["bullet_pref"] == 0.0
    assert extract_signals("give me bullets")["bullet_pref"] == 1.0


def test_friction_decays_on_calm_messages() -> None:
    angry = merge_profile(BehaviorProfile(), extract_signals("ugh this is useless"), now=NOW)
    assert angry.friction == pytest.approx(0.15)
    calmer = merge_profile(angry, extract_signals("thanks, that works"), now=NOW)
    assert calmer.friction < angry.friction


def test_markers_match_whole_words_only() -> None:
    calm = extract_signals("I wrongly booked a nonstop flight with a stopover, any shortcut?")
    assert calm["friction"] == 0.0
    assert calm["depth_pref"] is None

    upset = extract_signals("Stop. That's wrong!")
    assert upset["friction"] == 1.0
    assert extract_signals("no!")["friction"] == 1.0


def test_merge_profile_clamps_hostile_input() -> None:
    merged = merge_profile({"depth_pref": 9, "directness": -4}, {"depth_pref": 5.0}, alpha=1.0, now=NOW)
    assert merged.depth_pref == 1.0
    assert merged.directness == 0.0
    assert merged.updated_at == iso_utc(NOW)


def test_voice_line_renders_profile() -> None:
    assert voice_line(BehaviorProfile()) == ""
    line = voice_line({"depth_pref": 0.1, "directness": 0.9, "friction": 0.7})
    assert "short" in line
    assert "direct" in line
    assert "frustrated" in line


class _FakePersona:
    def __init__(self, summary: str) -> None:
        self.summary = summary
        self.calls: list[list[str]] = []

    async def summarize_voice_profile(self, *, user_id: str, memory: list[str]) -> str:
        self.calls.append(list(memory))
        return self.summary


def test_voice_profile_refreshes_weekly_only() -> None:
    assert voice_profile_due(None, now=NOW, refresh_days=7)
    assert not voice_profile_due(iso_utc(NOW - timedelta(days=2)), now=NOW, refresh_days=7)
    assert voice_profile_due(iso_utc(NOW - timedelta(days=8)), now=NOW, refresh_days=7)

    persona = _FakePersona("Casual, dry humour, likes numbers.")
    fresh = asyncio.run(
        refresh_voice_profile(persona, user_id="u", updated_at=None, memory=["hey", "numbers pls"], now=NOW, refresh_days=7)
    )
    assert fresh == {"voice_profile": "Casual, dry humour, likes numbers.", "voice_profile_updated_at": iso_utc(NOW)}

    recent = iso_utc(NOW - timedelta(days=1))
    skipped = asyncio.run(
        refresh_voice_profile(persona, user_id="u", updated_at=recent, memory=["hey"], now=NOW, refresh_days=7)
    )
    empty = asyncio.run(refresh_voice_profile(persona, user_id="u", updated_at=None, memory=[], now=NOW, refresh_days=7))
    assert skipped == {}
    assert empty == {}
    assert len(persona.calls) == 1
