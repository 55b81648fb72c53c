"""Per-user tone learning.

``merge_profile`` is a pure exponential moving average over five bounded
dimensions. Signals come from cheap marker matching on the latest message;
a dimension with no signal keeps its value, except friction, which decays
toward zero on calm messages.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from ..common import as_float, clamp, collapse_spaces, iso_utc, utc_now

DIMENSIONS = ("depth_pref", "bullet_pref", "directness", "anti_robotic", "friction")
DEFAULT_ALPHA = 0.15


@dataclass(slots=True)
class BehaviorProfile:
    depth_pref: float = 0.5
    bullet_pref: float = 0.5
    directness: float = 0.5
    anti_robotic: float = 0.5
    friction: float = 0.0
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> "BehaviorProfile":
        if isinstance(raw, BehaviorProfile):
            return raw
        data = raw if isinstance(raw, dict) else {}
        neutral = cls()
        values = {
            name: clamp(as_float(data.get(name), getattr(neutral, name)), 0.0, 1.0)
            for name in DIMENSIONS
        }
        updated_at = data.get("updated_at")
        return cls(**values, updated_at=str(updated_at) if updated_at else None)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _markers(*phrases: str) -> re.Pattern[str]:
    # Whole words only: "stop" must not fire on "nonstop".
    alternatives = "|".join(re.escape(phrase) for phrase in phrases)
    return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)")


_SHORT_MARKERS = _markers("keep it short", "short", "brief", "tl;dr", "tldr", "quick", "one line", "in a sentence", "too long")
_DEEP_MARKERS = _markers("more detail", "in depth", "in-depth", "go deeper", "deeper", "elaborate", "explain", "walk me through")
_BULLET_MARKERS = _markers("bullet", "bullets", "as a list", "list it", "step by step", "steps")
_PROSE_MARKERS = _markers("no bullets", "no lists", "no list", "paragraph", "in prose")
_DIRECT_MARKERS = _markers("be honest", "be direct", "blunt", "straight up", "just tell me", "bottom line", "no fluff")
_SOFT_MARKERS = _markers("gently", "be kind", "softly", "go easy")
_ROBOTIC_MARKERS = _markers("robotic", "stiff", "like a bot", "sound human", "corporate", "so formal", "too formal")
_FRICTION_MARKERS = _markers(
    "wrong",
    "not what i",
    "that's not",
    "thats not",
    "useless",
    "annoying",
    "ugh",
    "wtf",
    "stop",
    "you don't get",
    "you dont get",
    "no!",
    "doesn't help",
    "doesnt help",
)


def _contains_any(text_cf: str, markers: re.Pattern[str]) -> bool:
    return markers.search(text_cf) is not None


def extract_signals(text: str) -> dict[str, float | None]:
    """Binary targets per dimension; None means the message says nothing about it."""
    text_cf = collapse_spaces(str(text or "")).casefold().replace("’", "'")
    signals: dict[str, float | None] = {name: None for name in DIMENSIONS}
    if not text_cf:
        return signals

    # Prose markers are checked first since "no bullets" also contains "bullets".
    if _contains_any(text_cf, _PROSE_MARKERS):
        signals["bullet_pref"] = 0.0
    elif _contains_any(text_cf, _BULLET_MARKERS):
        signals["bullet_pref"] = 1.0

    if _contains_any(text_cf, _SHORT_MARKERS):
        signals["depth_pref"] = 0.0
    elif _contains_any(text_cf, _DEEP_MARKERS):
        signals["depth_pref"] = 1.0

    if _contains_any(text_cf, _DIRECT_MARKERS):
        signals["directness"] = 1.0
    elif _contains_any(text_cf, _SOFT_MARKERS):
        signals["directness"] = 0.0

    if _contains_any(text_cf, _ROBOTIC_MARKERS):
        signals["anti_robotic"] = 1.0

    frustrated = _contains_any(text_cf, _FRICTION_MARKERS) or text_cf.count("!") >= 3
    signals["friction"] = 1.0 if frustrated else 0.0
    return signals


def merge_profile(
    old: BehaviorProfile | dict[str, Any] | None,
    signals: dict[str, float | None],
    *,
    alpha: float = DEFAULT_ALPHA,
    now: datetime | None = None,
) -> BehaviorProfile:
    base = BehaviorProfile.from_dict(old)
    weight = clamp(float(alpha), 0.0, 1.0)
    updated: dict[str, float] = {}
    for name in DIMENSIONS:
        previous = getattr(base, name)
        target = signals.get(name)
        if target is None:
            updated[name] = previous
            continue
        updated[name] = clamp(previous + weight * (clamp(float(target), 0.0, 1.0) - previous), 0.0, 1.0)
    return BehaviorProfile(**updated, updated_at=iso_utc(now or utc_now()))


def voice_line(profile: BehaviorProfile | dict[str, Any] | None) -> str:
    p = BehaviorProfile.from_dict(profile)
    parts: list[str] = []
    if p.depth_pref <= 0.35:
        parts.append("Keep replies short.")
    elif p.depth_pref >= 0.65:
        parts.append("Go into depth when it helps.")
    if p.bullet_pref >= 0.65:
        parts.append("Use bullets for anything list-shaped.")
    elif p.bullet_pref <= 0.35:
        parts.append("Prefer flowing sentences over bullets.")
    if p.directness >= 0.65:
        parts.append("Lead with the answer and be direct.")
    elif p.directness <= 0.35:
        parts.append("Keep the tone gentle.")
    if p.anti_robotic >= 0.6:
        parts.append("Sound human, never stiff or corporate.")
    if p.friction >= 0.5:
        parts.append("They are frustrated: acknowledge it in a few words and fix course.")
    return " ".join(parts)
