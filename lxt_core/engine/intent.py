"""Ordered, declarative intent rules.

The first rule that matches wins, so the order of ``INTENT_RULES`` is part of
the contract: the brief and scan rules sit before weather and news because
they share vocabulary ("what's happening today", "any signals on the news").
"""

from __future__ import annotations

import re
from dataclasses import dataclass

INTENTS = (
    "greeting",
    "daily_brief",
    "signal_scan",
    "weather",
    "stocks",
    "news",
    "email",
    "decision",
    "chat",
)


@dataclass(frozen=True, slots=True)
class IntentRule:
    tag: str
    pattern: re.Pattern[str]

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))


def _rule(tag: str, pattern: str) -> IntentRule:
    return IntentRule(tag=tag, pattern=re.compile(pattern, re.IGNORECASE))


INTENT_RULES: tuple[IntentRule, ...] = (
    _rule(
        "greeting",
        r"^(hi|hello|hey|yo|sup|hiya|good (morning|afternoon|evening)|what'?s up|whats up)"
        r"( there)?( loravo)?[\s!.?]*$",
    ),
    _rule(
        "daily_brief",
        r"\b(daily brief|morning brief|brief me|my brief|today'?s brief|what'?s my day look like)\b",
    ),
    _rule(
        "signal_scan",
        r"\b(signal scan|scan (for )?signals|scan my (day|world|signals)|any signals|what signals)\b",
    ),
    _rule("weather", r"\b(weather|temperature|temp|forecast|rain|snow|wind|humid(ity)?)\b"),
    _rule(
        "stocks",
        r"(\$[a-z]{1,5}\b|\b(stock|stocks|share price|ticker|market cap|quote for|nasdaq|nyse)\b)",
    ),
    _rule(
        "news",
        r"\b(news|headlines|what happened|what'?s going on|whats going on|breaking|update me|anything i should know)\b",
    ),
    _rule(
        "email",
        r"\b(gmail|outlook|yahoo mail|e-?mail|emails|inbox|unread)\b",
    ),
    _rule(
        "decision",
        r"\b(should i|move or wait|be honest|pros and cons|decide|decision|worth it|go or stay|buy or sell)\b",
    ),
)

IDENTITY_PATTERNS: tuple[str, ...] = (
    "powered by",
    "powerd by",
    "what powers",
    "what are you built on",
    "what model",
    "what are you running on",
)


def _normalize(text: str) -> str:
    cleaned = str(text or "").lower().strip()
    return cleaned.replace("’", "'")


def classify_intent(text: str, rules: tuple[IntentRule, ...] = INTENT_RULES) -> str:
    normalized = _normalize(text)
    if not normalized:
        return "chat"
    for rule in rules:
        if rule.matches(normalized):
            return rule.tag
    return "chat"


def is_identity_question(text: str) -> bool:
    normalized = _normalize(text)
    return any(pattern in normalized for pattern in IDENTITY_PATTERNS)


def is_weather_question(text: str) -> bool:
    normalized = _normalize(text)
    return bool(re.search(r"\b(weather|forecast|temperature|temp)\b", normalized))
