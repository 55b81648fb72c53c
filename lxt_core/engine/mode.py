from __future__ import annotations

import re

MODES = ("instant", "auto", "thinking")
TOKEN_LIMITS: dict[str, int] = {"instant": 400, "auto": 1000, "thinking": 1800}

_GREETING_RE = re.compile(r"^(hi|hello|hey|yo|sup|what'?s up|whats up)\b")
_INTERROGATIVE_RE = re.compile(r"^(what|when|where|who|is|are|do|does|can|should)\b")
_ANALYTICAL_RE = re.compile(r"(analy[sz]e|plan|compare|strategy|explain|forecast|should i|pros and cons)")

SHORT_TEXT_CHARS = 40
SHORT_QUESTION_CHARS = 120
LONG_TEXT_CHARS = 180

# Reply length tiers keyed by utterance length.
REPLY_TOKEN_STEPS: tuple[tuple[int, int], ...] = ((18, 140), (80, 260), (200, 520))
REPLY_TOKENS_DEEP = 900

_CONTINUATION_RE = re.compile(r"\b(more|go deeper|deeper|explain|details|elaborate|tell me more)\b")


def pick_auto_mode(text: str) -> str:
    t = str(text or "").lower().strip().replace("’", "'")
    if not t:
        return "instant"
    if len(t) < SHORT_TEXT_CHARS or _GREETING_RE.search(t):
        return "instant"
    if _INTERROGATIVE_RE.search(t) and len(t) < SHORT_QUESTION_CHARS:
        return "instant"
    if _ANALYTICAL_RE.search(t) or len(t) > LONG_TEXT_CHARS:
        return "thinking"
    return "instant"


def normalize_mode(value: object) -> str | None:
    raw = str(value or "").strip().lower()
    return raw if raw in MODES else None


def select_mode(text: str, override: object = None) -> tuple[str, int]:
    """Return ``(mode, token_budget)``. A valid non-auto override always wins."""
    mode = normalize_mode(override) or "auto"
    if mode == "auto":
        mode = pick_auto_mode(text)
    return mode, TOKEN_LIMITS.get(mode, TOKEN_LIMITS["auto"])


def has_continuation_cue(text: str) -> bool:
    return bool(_CONTINUATION_RE.search(str(text or "").lower()))


def depth_hint(text: str) -> str:
    t = str(text or "").strip()
    if has_continuation_cue(t) or len(t) > LONG_TEXT_CHARS:
        return "deep"
    if len(t) < SHORT_TEXT_CHARS or _GREETING_RE.search(t.lower()):
        return "short"
    return "normal"


def pick_reply_tokens(text: str) -> int:
    t = str(text or "").strip()
    if has_continuation_cue(t):
        return REPLY_TOKENS_DEEP
    for limit, tokens in REPLY_TOKEN_STEPS:
        if len(t) <= limit:
            return tokens
    return REPLY_TOKENS_DEEP
